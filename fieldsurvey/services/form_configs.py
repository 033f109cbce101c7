"""Form configuration loading.

Configs are JSON documents delivered alongside the app (``FORM_CONFIG_DIR``).
A document that fails to parse is skipped with a warning; the others still
load.
"""

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from fieldsurvey.core.config import settings
from fieldsurvey.core.exceptions import FormConfigError
from fieldsurvey.schemas.forms import FormConfig

logger = logging.getLogger(__name__)


def parse_form_config(document: dict[str, Any] | str | bytes) -> FormConfig:
    """Parse one FormConfig document.

    Raises:
        FormConfigError: If the document is not JSON or does not describe a valid form.
    """
    try:
        if isinstance(document, (str, bytes)):
            return FormConfig.model_validate_json(document)
        return FormConfig.model_validate(document)
    except ValidationError as exc:
        raise FormConfigError(f"Invalid form config: {exc}") from exc


def load_form_config(path: Path) -> FormConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FormConfigError(f"Cannot read form config {path}: {exc}") from exc
    return parse_form_config(text)


class FormConfigRegistry:
    """Form configs by id."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self._directory = Path(directory or settings.FORM_CONFIG_DIR)
        self._configs: dict[str, FormConfig] = {}

    def __contains__(self, form_id: str) -> bool:
        return form_id in self._configs

    def __len__(self) -> int:
        return len(self._configs)

    def load(self) -> int:
        """Load every ``*.json`` document in the directory. Returns how many loaded."""
        if not self._directory.is_dir():
            logger.warning("Form config directory %s does not exist", self._directory)
            return 0
        loaded = 0
        for path in sorted(self._directory.glob("*.json")):
            try:
                config = load_form_config(path)
            except FormConfigError as exc:
                logger.warning("Skipping form config %s: %s", path.name, exc)
                continue
            self.register(config)
            loaded += 1
        logger.info("Loaded %d form config(s) from %s", loaded, self._directory)
        return loaded

    def register(self, config: FormConfig) -> None:
        if config.id in self._configs:
            logger.info("Replacing form config %s (version %s)", config.id, config.version)
        self._configs[config.id] = config

    def get(self, form_id: str) -> FormConfig:
        config = self._configs.get(form_id)
        if config is None:
            raise FormConfigError(f"Unknown form '{form_id}'")
        return config

    def list(self) -> list[FormConfig]:
        return sorted(self._configs.values(), key=lambda c: c.id)
