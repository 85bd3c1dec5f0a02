from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration for offsetreg."""

    # Logging
    LOG_LEVEL: str = "INFO"

    # Offsets are pre-logged; this is only the default column name
    DEFAULT_OFFSET_COL: str = "offset"

    # Seed used by engines and splitters when the caller gives none
    RANDOM_STATE: int = 42

    # Iteration limits handed to statsmodels
    GLM_MAX_ITER: int = 100
    GLMNET_MAX_ITER: int = 200

    # Tidy prediction output
    PREDICTION_COLUMN: str = ".pred"

    model_config = {"env_file": ".env", "env_prefix": "OFFSETREG_", "extra": "ignore"}


settings = Settings()
