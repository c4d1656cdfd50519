"""Configuration management using Pydantic for validation."""

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Type

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from qakg.exceptions import ConfigurationError
from qakg.ontology import ENTITY_TYPES, RELATION_TYPES


class LLMConfig(BaseSettings):
    """Inference endpoint configuration."""

    model_config = SettingsConfigDict(env_prefix="QAKG_LLM_")

    provider: Literal["ollama", "openai"] = "ollama"
    model: str = "qwen2.5:7b-instruct-q4_K_M"
    base_url: str = "http://localhost:11434"
    temperature: float = 0.0
    timeout: float = Field(default=120.0, ge=1.0, le=600.0)
    connect_timeout: float = Field(default=20.0, gt=0.0)
    api_key: Optional[str] = None

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is between 0 and 2."""
        if not 0 <= v <= 2:
            raise ValueError("Temperature must be between 0 and 2")
        return v

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("base_url must not be empty")
        return v.rstrip("/")


class UnitConfig(BaseSettings):
    """Extraction-unit construction options."""

    model_config = SettingsConfigDict(env_prefix="QAKG_UNITS_")

    max_units: int = Field(default=0, ge=0)
    keep_qa_prefix: bool = True
    use_ner_hints: bool = True
    max_hints: int = Field(default=30, ge=0)


class PipelineConfig(BaseSettings):
    """Worker pool and retry configuration."""

    model_config = SettingsConfigDict(env_prefix="QAKG_PIPELINE_")

    max_workers: int = Field(default=6, ge=1)
    batch_size: int = Field(default=8, ge=1)
    max_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0)
    prefetch_batches: int = Field(default=2, ge=1)
    heartbeat_seconds: float = Field(default=15.0, gt=0.0)


class NormalizationConfig(BaseSettings):
    """Constants driving the post-extraction consistency rules."""

    model_config = SettingsConfigDict(env_prefix="QAKG_NORMALIZATION_")

    generic_entity_type: str = "Entity"
    product_type: str = "PRODUCT"
    benefit_type: str = "BENEFIT"
    benefit_triggers: List[str] = ["allowance", "benefit", "credit"]
    feature_phrases: List[str] = ["auto-pay"]
    feature_type: str = "FEATURE"
    app_type: str = "APP"
    legacy_relation: str = "accepts_method"
    feature_relation: str = "supports"
    feature_confidence: float = Field(default=0.9, gt=0.0, le=1.0)
    redirect_confidence: float = Field(default=0.85, gt=0.0, le=1.0)
    default_confidence: float = Field(default=0.75, gt=0.0, le=1.0)


class OntologyConfig(BaseSettings):
    """Vocabularies rendered into the extraction prompt."""

    model_config = SettingsConfigDict(env_prefix="QAKG_ONTOLOGY_")

    entity_types: List[str] = list(ENTITY_TYPES)
    relation_types: List[str] = list(RELATION_TYPES)


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="QAKG_LOGGING_")

    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5


class DatabaseConfig(BaseSettings):
    """Graph database configuration from environment variables."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    neo4j_uri: str = Field(default="bolt://localhost:7687")
    neo4j_user: str = Field(default="neo4j")
    neo4j_password: str = Field(default="neo4j")
    neo4j_database: str = Field(default="neo4j")
    write_batch_size: int = Field(default=500, ge=1)


_SECTIONS: Dict[str, Type[BaseSettings]] = {
    "llm": LLMConfig,
    "units": UnitConfig,
    "pipeline": PipelineConfig,
    "normalization": NormalizationConfig,
    "ontology": OntologyConfig,
    "logging": LoggingConfig,
    "database": DatabaseConfig,
}


class Config(BaseSettings):
    """Main configuration class."""

    model_config = SettingsConfigDict(
        env_prefix="QAKG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    units: UnitConfig = Field(default_factory=UnitConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    normalization: NormalizationConfig = Field(default_factory=NormalizationConfig)
    ontology: OntologyConfig = Field(default_factory=OntologyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Data paths
    input_path: Path = Field(default=Path("data/nlp_output.jsonl"))
    output_path: Path = Field(default=Path("data/llm_structured.jsonl"))
    prompts_path: Optional[Path] = None

    @staticmethod
    def _deep_merge_dict(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge two dicts (overrides win)."""
        merged: Dict[str, Any] = dict(base)
        for key, value in overrides.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = Config._deep_merge_dict(merged[key], value)
            else:
                merged[key] = value
        return merged

    @classmethod
    def from_yaml(cls, yaml_path: str | Path = "config/config.yaml") -> "Config":
        """Load configuration from YAML file and environment variables.

        Precedence (highest to lowest):
        1) Environment variables / .env
        2) YAML file
        3) Model defaults

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If the YAML root is not a mapping
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError(f"YAML config root must be a mapping/dict: {yaml_path}")

        # Nested sections validated from a dict do not read their own env
        # prefixes, so collect each section's env overrides explicitly.
        env_overrides: Dict[str, Any] = {
            key: value
            for key, value in cls().model_dump(exclude_defaults=True).items()
            if key not in _SECTIONS
        }
        for name, section_cls in _SECTIONS.items():
            section_env = section_cls().model_dump(exclude_defaults=True)
            if section_env:
                env_overrides[name] = section_env

        merged = cls._deep_merge_dict(yaml_config, env_overrides)

        return cls(**merged)

    def validate_config(self) -> None:
        """Validate cross-field configuration settings.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.llm.provider == "openai" and not self.llm.api_key:
            if "api.openai.com" in self.llm.base_url:
                raise ConfigurationError("An API key is required for the hosted OpenAI endpoint")

        if self.prompts_path is not None and not self.prompts_path.exists():
            raise ConfigurationError(f"Prompt template not found: {self.prompts_path}")

        if not self.ontology.entity_types:
            raise ConfigurationError("Ontology must define at least one entity type")


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Raises:
        RuntimeError: If configuration hasn't been initialized
    """
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call load_config() first.")
    return _config


def load_config(yaml_path: str | Path | None = None) -> Config:
    """Load and validate configuration.

    Args:
        yaml_path: Optional YAML configuration file; defaults and environment
            variables are used when omitted.

    Returns:
        Loaded and validated Config instance
    """
    global _config
    config = Config.from_yaml(yaml_path) if yaml_path is not None else Config()
    config.validate_config()
    _config = config
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
