from typing import Dict, List, Optional, Union
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Genetic Test Order Composer"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Remote resource API
    RESOURCE_API_BASE_URL: str = "http://localhost:8080"
    RESOURCE_API_TOKEN: Optional[str] = None
    RESOURCE_API_TIMEOUT_SECONDS: float = 10.0

    @field_validator("RESOURCE_API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # Hospital the staff member works for, stamped on created patients/prescriptions
    HOSPITAL_ID: Optional[str] = None

    # Order composition defaults
    DEFAULT_ORDER_STATUS: str = "initiation"
    FORWARD_STATUS: str = "forward_analysis"
    DEFAULT_PAYMENT_TYPE: str = "CASH"
    DEFAULT_PAYMENT_STATUS: str = "PENDING"
    PLACEHOLDER_PATIENT_PHONE: str = "0000000000"

    # Catalog names the backend uses for each service type besides the type value itself
    SERVICE_NAME_ALIASES: Dict[str, List[str]] = {
        "reproduction": ["sản"],
        "embryo": ["phôi"],
        "disease": ["bệnh lý"],
    }

    # Statuses used to load selectable candidates
    BARCODE_CANDIDATE_STATUS: str = "created"
    PRESCRIPTION_CANDIDATE_STATUS: str = "initation"  # backend spelling

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra='ignore')

settings = Settings()
