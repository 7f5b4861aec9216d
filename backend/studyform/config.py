"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DATABASE_URL: str
    STAGING_DIR: Path
    MAX_UPLOAD_BYTES: int
    STUDY_API_URL: str
    STORAGE_API_URL: str
    HTTP_TIMEOUT_SECONDS: float
    AUTHORIZED_ROLES: tuple
    LOGIN_URL: str
    STUDY_INDEX_URL: str
    STUDY_SEMESTER: str
    STUDY_YEAR: int
    DRAFT_TTL_SECONDS: int
    REQUIRE_TIME_ORDER: bool

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'studyform.db'}")
        self.STAGING_DIR = Path(os.getenv("STAGING_DIR", str(BASE / "data" / "staging"))).expanduser()
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.STUDY_API_URL = os.getenv("STUDY_API_URL", "http://localhost:8080").rstrip("/")
        self.STORAGE_API_URL = os.getenv("STORAGE_API_URL", "http://localhost:9000").rstrip("/")
        self.HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
        self.AUTHORIZED_ROLES = tuple(
            r.strip() for r in os.getenv("AUTHORIZED_ROLES", "ROLE_VERIFIED,ROLE_ADMIN").split(",") if r.strip()
        )
        self.LOGIN_URL = os.getenv("LOGIN_URL", "/login")
        self.STUDY_INDEX_URL = os.getenv("STUDY_INDEX_URL", "/study")
        self.STUDY_SEMESTER = os.getenv("STUDY_SEMESTER", "Spring")
        self.STUDY_YEAR = int(os.getenv("STUDY_YEAR", "2025"))
        self.DRAFT_TTL_SECONDS = int(os.getenv("DRAFT_TTL_SECONDS", str(24 * 3600)))
        self.REQUIRE_TIME_ORDER = os.getenv("REQUIRE_TIME_ORDER", "false").lower() == "true"
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if not self.AUTHORIZED_ROLES:
            raise RuntimeError("AUTHORIZED_ROLES must name at least one role")


settings = Settings()
