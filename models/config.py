"""
Configuration data models for the screenshot transcript service.
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional


@dataclass
class AzureConfig:
    """OCR provider (Azure Computer Vision Read v3.2) configuration."""
    endpoint: str = ""
    subscription_key: str = ""
    analyze_path: str = "/vision/v3.2/read/analyze"
    # HTTP timeouts (seconds) for the submit call and each poll call
    submit_timeout: float = 30.0
    poll_request_timeout: float = 10.0
    # Submit retries for 429/5xx/connection errors
    submit_retries: int = 2
    # Poll loop: fixed interval and attempt budget (~1 minute wall clock)
    poll_interval: float = 1.0
    max_poll_attempts: int = 60
    # Hard wall-clock bound; None means poll_interval * max_poll_attempts
    poll_timeout: Optional[float] = None
    # Transient poll failures are retried with a longer backoff before the
    # attempt counts against the budget.
    transient_retries: int = 2
    transient_backoff_factor: float = 2.0
    max_backoff: float = 10.0

    def analyze_url(self) -> str:
        return self.endpoint.rstrip("/") + self.analyze_path


@dataclass
class PreprocessConfig:
    """Input validation and provider compliance limits."""
    min_bytes: int = 32
    max_bytes: int = 50 * 1024 * 1024
    min_side: int = 50
    max_side: int = 10000
    jpeg_quality: int = 85


@dataclass
class NoiseFilterConfig:
    """Noise filter options."""
    min_chars: int = 2
    # User supplied regexes appended after the built-in patterns
    extra_patterns: List[str] = field(default_factory=list)


@dataclass
class ClusterConfig:
    """Bubble grouping thresholds (pixels)."""
    vertical_gap: float = 25.0
    horizontal_gap: float = 100.0


@dataclass
class ColorConfig:
    """Colour sampling calibration.

    These values are empirical and should be re-tuned against labelled
    screenshots rather than treated as fixed.
    """
    window_size: int = 30
    # "sent" pixel: green dominates red and blue by sent_margin and is bright enough
    sent_margin: int = 30
    sent_min_green: int = 100
    sent_ratio: float = 0.30
    # "received-dark": every channel below dark_max, but not near-black
    dark_max: int = 70
    dark_min_sum: int = 30
    # "received-light": every channel above light_min and mutually close
    light_min: int = 180
    light_spread: int = 20
    received_ratio: float = 0.40
    # Fallback search radius when no region contains a bubble centroid
    match_radius: float = 100.0
    min_window_pixels: int = 10


@dataclass
class PositionConfig:
    """Left/right split options."""
    # A largest gap below this is treated as a single column
    min_split_gap: float = 40.0


@dataclass
class PipelineConfig:
    """Pipeline orchestration options."""
    max_concurrency: int = 3
    # Consult bubble colours even when the user declared a LEFT/RIGHT side
    use_color_with_side_mapping: bool = False
    # Owner side assumed for GREEN mappings when no sent bubble gives evidence
    default_owner_side: str = "RIGHT"


@dataclass
class ServerConfig:
    """HTTP surface configuration."""
    host: str = "127.0.0.1"
    port: int = 8000
    max_upload_bytes: int = 10 * 1024 * 1024
    max_files: int = 10


@dataclass
class OutputConfig:
    """Transcript export configuration."""
    format: str = "json"  # json, csv, txt, md
    directory: str = "./output"
    # Export several formats at once; takes precedence over ``format`` when non-empty
    formats: List[str] = field(default_factory=list)
    # Keep each message's y coordinate in JSON/CSV exports
    include_positions: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = "./logs/transcript_ocr.log"
    max_size: str = "10MB"


@dataclass
class AppConfig:
    """Main application configuration."""
    azure: AzureConfig = field(default_factory=AzureConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    noise: NoiseFilterConfig = field(default_factory=NoiseFilterConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    color: ColorConfig = field(default_factory=ColorConfig)
    position: PositionConfig = field(default_factory=PositionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> bool:
        """Validate configuration parameters."""
        errors = []

        az = self.azure
        if az.poll_interval < 0:
            errors.append("azure.poll_interval must be >= 0")
        if az.max_poll_attempts < 1:
            errors.append("azure.max_poll_attempts must be >= 1")
        if az.transient_retries < 0 or az.submit_retries < 0:
            errors.append("azure retry counts must be >= 0")
        if az.transient_backoff_factor < 1.0:
            errors.append("azure.transient_backoff_factor must be >= 1.0")

        pre = self.preprocess
        if pre.min_bytes < 0 or pre.max_bytes <= pre.min_bytes:
            errors.append("preprocess byte limits must satisfy 0 <= min_bytes < max_bytes")
        if pre.min_side < 1 or pre.max_side <= pre.min_side:
            errors.append("preprocess side limits must satisfy 1 <= min_side < max_side")
        if not 1 <= pre.jpeg_quality <= 100:
            errors.append("preprocess.jpeg_quality must be between 1 and 100")

        if self.noise.min_chars < 0:
            errors.append("noise.min_chars must be >= 0")

        if self.cluster.vertical_gap <= 0 or self.cluster.horizontal_gap <= 0:
            errors.append("cluster thresholds must be positive")

        col = self.color
        if col.window_size < 2:
            errors.append("color.window_size must be >= 2")
        for name in ("sent_ratio", "received_ratio"):
            value = getattr(col, name)
            if value <= 0.0 or value > 1.0:
                errors.append(f"color.{name} must be in (0, 1]")

        if self.pipeline.max_concurrency < 1:
            errors.append("pipeline.max_concurrency must be >= 1")
        if self.pipeline.default_owner_side.upper() not in ("LEFT", "RIGHT"):
            errors.append("pipeline.default_owner_side must be LEFT or RIGHT")

        if not 0 < self.server.port < 65536:
            errors.append("server.port must be between 1 and 65535")
        if self.server.max_files < 1:
            errors.append("server.max_files must be >= 1")

        valid_formats = ("json", "csv", "txt", "md")
        for fmt in [self.output.format] + list(self.output.formats):
            if fmt.lower() not in valid_formats:
                errors.append(f"output format must be one of {', '.join(valid_formats)}, got {fmt!r}")

        if self.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append("logging.level must be a standard level name")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        """Convert configuration to a nested dictionary."""
        data = asdict(self)
        if not include_secrets:
            data["azure"]["subscription_key"] = ""
        return data
