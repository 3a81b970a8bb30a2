# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Credflow Configuration - Single source of truth.
YAML is king. Env vars ONLY for secrets and deployment overrides.

Every tunable of the workflow engine lives in configs/engine.yaml so it
can be inspected with `cat` and `grep`.
"""

import os
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List


DEFAULT_ALLOWED_TABLES = [
    "inscricoes_edital",
    "inscricao_documentos",
    "credenciados",
    "credenciado_crms",
    "horarios_atendimento",
    "workflow_form_data",
    "workflow_messages",
    "audit_logs",
    "app_notifications",
]


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable engine configuration.
    All values from YAML. No hidden state.
    """

    # -- Service --
    service_host: str = "0.0.0.0"
    service_port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # -- Storage --
    storage_backend: str = "memory"  # "memory" or "file"
    storage_path: str = "./volumes/credflow"

    # -- HTTP --
    http_timeout: float = 30.0
    webhook_allow_private_network: bool = False

    # -- Mail (Resend-compatible API) --
    mail_backend: str = "outbox"  # "outbox" or "resend"
    mail_api_url: str = "https://api.resend.com/emails"
    mail_from: str = "Sistema de Credenciamento <onboarding@resend.dev>"

    # -- Document collaborators --
    signature_api_url: str = "https://api.assinafy.com.br/v1"
    ocr_api_url: str = "https://vision.googleapis.com/v1/images:annotate"

    # -- Database node --
    allowed_tables: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TABLES))
    database_max_rows: int = 1000

    # -- Engine --
    max_parallel_nodes: int = 0  # 0 = unbounded
    node_timeout: float = 300.0
    max_execution_retries: int = 3
    function_timeout: float = 5.0
    function_max_operations: int = 100000
    checkpoint_warn_bytes: int = 1024 * 1024

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"

    def get_mail_api_key(self) -> Optional[str]:
        """Get mail provider API key from environment"""
        return get_mail_api_key()

    def get_signature_api_key(self) -> Optional[str]:
        """Get signature provider API key from environment"""
        return get_signature_api_key()

    def get_ocr_api_key(self) -> Optional[str]:
        """Get OCR provider API key from environment"""
        return get_ocr_api_key()


# =============================================================================
# SECRETS - The ONLY thing from environment variables
# =============================================================================

def get_mail_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("RESEND_API_KEY")


def get_signature_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("SIGNATURE_API_KEY")


def get_ocr_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("OCR_API_KEY")


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = "configs/engine.yaml") -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.
    """
    if not Path(path).exists():
        return Config()

    with open(path) as f:
        y = yaml.safe_load(f) or {}

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    defaults = Config()

    return Config(
        # Service
        service_host=get(y, "service", "host") or defaults.service_host,
        service_port=int(os.getenv("CREDFLOW_PORT", get(y, "service", "port") or defaults.service_port)),
        cors_origins=get(y, "service", "cors_origins") or ["*"],

        # Storage
        storage_backend=get(y, "storage", "backend") or defaults.storage_backend,
        storage_path=os.getenv("CREDFLOW_STORAGE_PATH") or get(y, "storage", "path") or defaults.storage_path,

        # HTTP
        http_timeout=get(y, "http", "timeout") or defaults.http_timeout,
        webhook_allow_private_network=bool(get(y, "http", "allow_private_network", default=False)),

        # Mail
        mail_backend=get(y, "mail", "backend") or defaults.mail_backend,
        mail_api_url=get(y, "mail", "api_url") or defaults.mail_api_url,
        mail_from=get(y, "mail", "from") or defaults.mail_from,

        # Document collaborators
        signature_api_url=get(y, "signature", "api_url") or defaults.signature_api_url,
        ocr_api_url=get(y, "ocr", "api_url") or defaults.ocr_api_url,

        # Database node
        allowed_tables=get(y, "database", "allowed_tables") or list(DEFAULT_ALLOWED_TABLES),
        database_max_rows=get(y, "database", "max_rows") or defaults.database_max_rows,

        # Engine
        max_parallel_nodes=get(y, "engine", "max_parallel_nodes", default=0) or 0,
        node_timeout=get(y, "engine", "node_timeout") or defaults.node_timeout,
        max_execution_retries=get(y, "engine", "max_execution_retries") or defaults.max_execution_retries,
        function_timeout=get(y, "engine", "function", "timeout") or defaults.function_timeout,
        function_max_operations=get(y, "engine", "function", "max_operations") or defaults.function_max_operations,
        checkpoint_warn_bytes=get(y, "engine", "checkpoint_warn_bytes") or defaults.checkpoint_warn_bytes,

        # Logging
        log_level=os.getenv("LOG_LEVEL") or get(y, "logging", "level") or "INFO",
        log_format=get(y, "logging", "format") or "json",
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("CREDFLOW_CONFIG_PATH", "configs/engine.yaml")
        _config = load_config(config_path)
    return _config
