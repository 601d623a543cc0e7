import os
import tempfile
from typing import List, Dict, Tuple
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load .env before reading any environment variables
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class APIConfig:
    """Configuration class for the FitMirror Try-On API."""

    # API Settings
    title: str = "FitMirror Try-On API"
    description: str = "Virtual try-on facade over hosted image-synthesis models"
    version: str = "1.0.0"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8080
    workers: int = 1
    reload: bool = False

    # File Upload Settings
    max_upload_mb: int = 50
    max_upload_bytes: int = field(init=False)
    allowed_content_types: set = field(default_factory=lambda: {"image/jpeg", "image/png", "image/webp"})
    scratch_dir: str = "uploads"

    # CORS Settings
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])

    # Logging Settings
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Inference provider
    hf_api_key: str = ""
    tryon_space: str = "alexff91/FitMirror"
    tryon_spaces: Dict[str, str] = field(default_factory=dict)
    tryon_api_name: str = "/tryon"
    require_category: bool = True
    denoise_steps: int = 30
    seed: int = 42
    default_garment_description: str = "cloth fitting the person shape"
    wardrobe_model: str = "google/vit-base-patch16-224"
    person_model: str = "nvidia/segformer-b0-finetuned-ade-512-512"
    person_labels: List[str] = field(default_factory=lambda: ["person"])
    min_person_coverage: float = 0.01
    gradio_temp_dir: str = field(default_factory=lambda: os.path.join(tempfile.gettempdir(), "gradio"))

    # Timeouts (seconds)
    fetch_timeout: float = 60.0
    predict_timeout: float = 300.0

    # Rate limiting
    rate_limit_requests: int = 100
    rate_limit_window: int = 15 * 60
    trust_forwarded: bool = False

    def __post_init__(self):
        """Post-initialization to set computed fields and load from environment."""
        # Load from environment variables
        self.host = os.getenv("HOST", self.host)
        self.port = int(os.getenv("PORT", str(self.port)))
        self.workers = int(os.getenv("WORKERS", str(self.workers)))
        self.reload = _env_bool("RELOAD", self.reload)

        self.max_upload_mb = int(os.getenv("MAX_UPLOAD_MB", str(self.max_upload_mb)))
        self.max_upload_bytes = self.max_upload_mb * 1024 * 1024
        self.scratch_dir = os.getenv("SCRATCH_DIR", self.scratch_dir)

        # Handle allowed content types
        content_types_env = os.getenv("ALLOWED_CONTENT_TYPES")
        if content_types_env:
            self.allowed_content_types = {c.strip() for c in content_types_env.split(",") if c.strip()}

        # Handle allowed origins
        origins_env = os.getenv("ALLOWED_ORIGINS")
        if origins_env and origins_env != "*":
            self.allowed_origins = [o.strip() for o in origins_env.split(",") if o.strip()]

        self.log_level = os.getenv("LOG_LEVEL", self.log_level)
        self.log_format = os.getenv("LOG_FORMAT", self.log_format)

        # Inference provider
        self.hf_api_key = os.getenv("HUGGING_FACE_API_KEY", self.hf_api_key).strip()
        self.tryon_space = os.getenv("TRYON_SPACE", self.tryon_space).strip()
        self.tryon_spaces = {
            category: os.getenv(f"TRYON_SPACE_{category.upper()}", self.tryon_spaces.get(category, self.tryon_space)).strip()
            for category in ("up", "down", "dress")
        }
        self.tryon_api_name = os.getenv("TRYON_API_NAME", self.tryon_api_name)
        self.require_category = _env_bool("REQUIRE_CATEGORY", self.require_category)
        self.denoise_steps = int(os.getenv("DENOISE_STEPS", str(self.denoise_steps)))
        self.seed = int(os.getenv("SEED", str(self.seed)))
        self.default_garment_description = os.getenv("DEFAULT_GARMENT_DESCRIPTION", self.default_garment_description)
        self.wardrobe_model = os.getenv("WARDROBE_MODEL", self.wardrobe_model)
        self.person_model = os.getenv("PERSON_MODEL", self.person_model)
        self.person_labels = _env_list("PERSON_LABELS", self.person_labels)
        self.min_person_coverage = float(os.getenv("MIN_PERSON_COVERAGE", str(self.min_person_coverage)))
        self.gradio_temp_dir = os.getenv("GRADIO_TEMP_DIR", self.gradio_temp_dir)

        self.fetch_timeout = float(os.getenv("FETCH_TIMEOUT", str(self.fetch_timeout)))
        self.predict_timeout = float(os.getenv("PREDICT_TIMEOUT", str(self.predict_timeout)))

        self.rate_limit_requests = int(os.getenv("RATE_LIMIT_REQUESTS", str(self.rate_limit_requests)))
        self.rate_limit_window = int(os.getenv("RATE_LIMIT_WINDOW", str(self.rate_limit_window)))
        self.trust_forwarded = _env_bool("TRUST_FORWARDED", self.trust_forwarded)

    @property
    def categories(self) -> Tuple[str, ...]:
        return tuple(self.tryon_spaces)

    def validate(self) -> List[str]:
        """Validate configuration and return list of warnings/errors."""
        warnings = []

        if not self.hf_api_key:
            warnings.append("HUGGING_FACE_API_KEY is not set; remote model calls will be anonymous")

        if self.max_upload_mb < 1:
            warnings.append("MAX_UPLOAD_MB should be at least 1")

        if self.workers < 1:
            warnings.append("WORKERS should be at least 1")

        if self.fetch_timeout <= 0 or self.predict_timeout <= 0:
            warnings.append("FETCH_TIMEOUT and PREDICT_TIMEOUT must be positive")

        if self.rate_limit_requests < 1 or self.rate_limit_window < 1:
            warnings.append("RATE_LIMIT_REQUESTS and RATE_LIMIT_WINDOW should be at least 1")

        if not 0.0 <= self.min_person_coverage <= 1.0:
            warnings.append("MIN_PERSON_COVERAGE must be between 0 and 1")

        return warnings

# Global configuration instance
config = APIConfig()

# Validate configuration on import
if __name__ == "__main__":
    warnings = config.validate()
    if warnings:
        print("Configuration warnings:")
        for warning in warnings:
            print(f"  - {warning}")
    else:
        print("Configuration is valid!")

    print(f"\nCurrent configuration:")
    print(f"  - File size limit: {config.max_upload_mb}MB")
    print(f"  - Workers: {config.workers}")
    print(f"  - Try-on spaces: {config.tryon_spaces}")
    print(f"  - Rate limit: {config.rate_limit_requests} req / {config.rate_limit_window}s")
