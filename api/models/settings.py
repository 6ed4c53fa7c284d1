"""
Application settings registry and API models.

SETTINGS_CONFIG is the single source of truth for every persisted
setting: its key, validating schema, default value, description and
category. Every other lookup table in this module is derived from it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, TypeAdapter, ValidationError


class SettingCategory(str, Enum):
    """Grouping used by the admin settings screen."""
    SYSTEM = "System"
    SEARCH = "Search"
    RATE_LIMIT = "RateLimit"


class SettingKey(str, Enum):
    """Keys of all recognized application settings (stored verbatim)."""
    FIRST_TIME_SETUP_COMPLETED = "firstTimeSetupCompleted"
    PUBLIC_REGISTRATION = "publicRegistration"
    SEARCH_RESULTS_LIMIT = "searchResultsLimit"
    RATE_LIMITING_AUTHED_ENABLED = "rateLimitingAuthedEnabled"
    RATE_LIMITING_AUTHED_LIMIT = "rateLimitingAuthedLimit"
    RATE_LIMITING_UNAUTHENTICATED_ENABLED = "rateLimitingUnauthenticatedEnabled"
    RATE_LIMITING_UNAUTHENTICATED_LIMIT = "rateLimitingUnauthenticatedLimit"
    RATE_LIMITING_UNAUTHENTICATED_GLOBAL_ENABLED = "rateLimitingUnauthenticatedGlobalEnabled"
    RATE_LIMITING_UNAUTHENTICATED_GLOBAL_LIMIT = "rateLimitingUnauthenticatedGlobalLimit"


RateLimitPoints = Annotated[StrictInt, Field(ge=1, le=100000)]
SearchLimit = Annotated[StrictInt, Field(ge=1, le=200)]


@dataclass(frozen=True)
class SettingDefinition:
    """Declaration of one setting."""
    key: str
    schema: TypeAdapter
    default: Any
    description: str
    category: SettingCategory

    def validate(self, value: Any) -> Any:
        """Validate a value against this setting's schema, returning the parsed value."""
        return self.schema.validate_python(value)


def _define(key: SettingKey, type_: Any, default: Any, description: str, category: SettingCategory):
    return key.value, SettingDefinition(
        key=key.value,
        schema=TypeAdapter(type_),
        default=default,
        description=description,
        category=category,
    )


SETTINGS_CONFIG: Dict[str, SettingDefinition] = dict(
    [
        _define(
            SettingKey.FIRST_TIME_SETUP_COMPLETED,
            StrictBool,
            False,
            "Flag to indicate if the initial application setup has been completed.",
            SettingCategory.SYSTEM,
        ),
        _define(
            SettingKey.PUBLIC_REGISTRATION,
            StrictBool,
            False,
            "Allow new users to register.",
            SettingCategory.SYSTEM,
        ),
        _define(
            SettingKey.SEARCH_RESULTS_LIMIT,
            SearchLimit,
            50,
            "Maximum number of search results to return",
            SettingCategory.SEARCH,
        ),
        _define(
            SettingKey.RATE_LIMITING_AUTHED_ENABLED,
            StrictBool,
            False,
            "Enable rate limiting for authenticated users on operations",
            SettingCategory.RATE_LIMIT,
        ),
        _define(
            SettingKey.RATE_LIMITING_AUTHED_LIMIT,
            RateLimitPoints,
            20,
            "Maximum number of operations allowed per authenticated user in a 1-minute sliding window",
            SettingCategory.RATE_LIMIT,
        ),
        _define(
            SettingKey.RATE_LIMITING_UNAUTHENTICATED_ENABLED,
            StrictBool,
            False,
            "Enable rate limiting per unauthenticated user (by browser fingerprint)",
            SettingCategory.RATE_LIMIT,
        ),
        _define(
            SettingKey.RATE_LIMITING_UNAUTHENTICATED_LIMIT,
            RateLimitPoints,
            3,
            "Maximum number of operations allowed per unauthenticated user in a 1-minute sliding window",
            SettingCategory.RATE_LIMIT,
        ),
        _define(
            SettingKey.RATE_LIMITING_UNAUTHENTICATED_GLOBAL_ENABLED,
            StrictBool,
            False,
            "Enable global rate limiting for all unauthenticated users combined",
            SettingCategory.RATE_LIMIT,
        ),
        _define(
            SettingKey.RATE_LIMITING_UNAUTHENTICATED_GLOBAL_LIMIT,
            RateLimitPoints,
            20,
            "Maximum number of operations allowed system-wide for all unauthenticated users "
            "in a 1-minute sliding window",
            SettingCategory.RATE_LIMIT,
        ),
    ]
)

# Derived lookup tables
SETTING_NAMES: List[str] = list(SETTINGS_CONFIG)
SETTING_DEFAULT_VALUES: Dict[str, Any] = {key: d.default for key, d in SETTINGS_CONFIG.items()}
SETTING_DESCRIPTIONS: Dict[str, str] = {key: d.description for key, d in SETTINGS_CONFIG.items()}
SETTING_CATEGORY_VALUES: Dict[str, SettingCategory] = {key: d.category for key, d in SETTINGS_CONFIG.items()}


class SettingsValidationError(Exception):
    """A setting value failed its schema. Carries a user-facing message."""

    def __init__(self, key: str, message: str, code: str = "invalid_setting"):
        self.key = key
        self.message = message
        self.code = code
        super().__init__(f"{key}: {message}")


def setting_key_name(key: "SettingKey | str") -> str:
    """Normalize a SettingKey member or plain string to the stored key."""
    if isinstance(key, SettingKey):
        return key.value
    return key


def get_settings_entries() -> List[tuple[str, SettingDefinition]]:
    """Return (key, definition) pairs in declaration order."""
    return list(SETTINGS_CONFIG.items())


def get_setting_config(key: "SettingKey | str") -> Optional[SettingDefinition]:
    """Return the definition for a key, or None if the key is not recognized."""
    return SETTINGS_CONFIG.get(setting_key_name(key))


def get_settings_by_category(category: "SettingCategory | str") -> List[str]:
    """Return the keys that belong to a category."""
    return [key for key, d in SETTINGS_CONFIG.items() if d.category == category]


def validate_setting(key: "SettingKey | str", value: Any) -> Any:
    """
    Validate a value for a key.

    Unrecognized keys are passed through unchanged.

    Raises:
        SettingsValidationError: If the value fails the key's schema.
    """
    name = setting_key_name(key)
    definition = SETTINGS_CONFIG.get(name)
    if definition is None:
        return value
    try:
        return definition.validate(value)
    except ValidationError as e:
        first = e.errors()[0]["msg"] if e.errors() else str(e)
        raise SettingsValidationError(name, first) from e


class AllSettings(BaseModel):
    """Complete, validated set of application settings."""
    model_config = ConfigDict(populate_by_name=True)

    first_time_setup_completed: StrictBool = Field(False, alias="firstTimeSetupCompleted")
    public_registration: StrictBool = Field(False, alias="publicRegistration")
    search_results_limit: SearchLimit = Field(50, alias="searchResultsLimit")
    rate_limiting_authed_enabled: StrictBool = Field(False, alias="rateLimitingAuthedEnabled")
    rate_limiting_authed_limit: RateLimitPoints = Field(20, alias="rateLimitingAuthedLimit")
    rate_limiting_unauthenticated_enabled: StrictBool = Field(False, alias="rateLimitingUnauthenticatedEnabled")
    rate_limiting_unauthenticated_limit: RateLimitPoints = Field(3, alias="rateLimitingUnauthenticatedLimit")
    rate_limiting_unauthenticated_global_enabled: StrictBool = Field(
        False, alias="rateLimitingUnauthenticatedGlobalEnabled"
    )
    rate_limiting_unauthenticated_global_limit: RateLimitPoints = Field(
        20, alias="rateLimitingUnauthenticatedGlobalLimit"
    )


class SettingRecord(BaseModel):
    """A stored setting row."""
    key: str
    value: Any = None
    description: Optional[str] = None
    category: Optional[str] = None


class SettingsUpdateRequest(BaseModel):
    """Partial update of application settings from the admin screen."""
    model_config = ConfigDict(populate_by_name=True)

    public_registration: Optional[StrictBool] = Field(None, alias="publicRegistration")
    search_results_limit: Optional[SearchLimit] = Field(None, alias="searchResultsLimit")
    rate_limiting_authed_enabled: Optional[StrictBool] = Field(None, alias="rateLimitingAuthedEnabled")
    rate_limiting_authed_limit: Optional[RateLimitPoints] = Field(None, alias="rateLimitingAuthedLimit")
    rate_limiting_unauthenticated_enabled: Optional[StrictBool] = Field(
        None, alias="rateLimitingUnauthenticatedEnabled"
    )
    rate_limiting_unauthenticated_limit: Optional[RateLimitPoints] = Field(
        None, alias="rateLimitingUnauthenticatedLimit"
    )
    rate_limiting_unauthenticated_global_enabled: Optional[StrictBool] = Field(
        None, alias="rateLimitingUnauthenticatedGlobalEnabled"
    )
    rate_limiting_unauthenticated_global_limit: Optional[RateLimitPoints] = Field(
        None, alias="rateLimitingUnauthenticatedGlobalLimit"
    )

    def to_settings(self) -> Dict[str, Any]:
        """Return the provided values keyed by setting key."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SettingsResponse(BaseModel):
    """Response for the admin settings screen."""
    settings: List[SettingRecord]
    values: AllSettings
    total: int
    suggestions: List[dict] = Field(default_factory=list)
