"""
Email template loader.

Templates live in src/config/email_templates.yaml. Each email template has a
subject and an HTML body, both rendered with Jinja2. Plain string entries
(e.g. Slack messages) render to a single string.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import jinja2
import yaml

from src.utils.logger import StructuredLogger, get_logger

DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parents[1] / "config" / "email_templates.yaml"


class EmailTemplateLoader:
    """
    Loader for notification templates from YAML configuration.

    Templates are cached in memory after first load.
    """

    def __init__(
        self,
        template_path: Union[str, Path, None] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.template_path = Path(template_path or DEFAULT_TEMPLATE_PATH)
        self.logger = logger or get_logger(__name__)
        self._templates: Dict[str, Any] = {}
        self._loaded = False
        self._env = jinja2.Environment(autoescape=True, undefined=jinja2.ChainableUndefined)

    def load_templates(self) -> None:
        """Load all templates from YAML file."""
        if self._loaded:
            return

        try:
            with open(self.template_path, "r", encoding="utf-8") as f:
                self._templates = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            self.logger.error(
                f"Email templates file not found: {self.template_path}",
                operation="load_email_templates",
                error=str(e),
            )
            raise
        except yaml.YAMLError as e:
            self.logger.error(
                "Failed to parse email templates",
                operation="load_email_templates",
                error=str(e),
            )
            raise

        self._loaded = True
        self.logger.debug(
            f"Loaded {len(self._templates)} email templates",
            operation="load_email_templates",
        )

    def _render_string(self, template_name: str, source: str, context: Dict[str, Any]) -> str:
        try:
            return self._env.from_string(source).render(**context).strip()
        except jinja2.TemplateError as e:
            self.logger.error(
                f"Failed to render template '{template_name}'",
                operation="render_template",
                error=str(e),
            )
            raise

    def _get(self, template_name: str) -> Any:
        if not self._loaded:
            self.load_templates()
        if template_name not in self._templates:
            raise ValueError(
                f"Template '{template_name}' not found. Available: {list(self._templates.keys())}"
            )
        return self._templates[template_name]

    def render_email(self, template_name: str, **context: Any) -> Tuple[str, str]:
        """
        Render an email template.

        Returns:
            (subject, body_html)

        Raises:
            ValueError: If the template is missing or is not an email template
            jinja2.TemplateError: If rendering fails
        """
        template = self._get(template_name)
        if not isinstance(template, dict) or "subject" not in template or "body" not in template:
            raise ValueError(f"Template '{template_name}' is not an email template")

        subject = self._render_string(template_name, template["subject"], context)
        body = self._render_string(template_name, template["body"], context)
        return subject, body

    def render_text(self, template_name: str, **context: Any) -> str:
        """Render a plain string template (no HTML escaping)."""
        template = self._get(template_name)
        if not isinstance(template, str):
            raise ValueError(f"Template '{template_name}' is not a text template")
        try:
            return jinja2.Template(template).render(**context).strip()
        except jinja2.TemplateError as e:
            self.logger.error(
                f"Failed to render template '{template_name}'",
                operation="render_template",
                error=str(e),
            )
            raise

    def get_template_names(self) -> list:
        if not self._loaded:
            self.load_templates()
        return list(self._templates.keys())
