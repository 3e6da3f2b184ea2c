"""
Document Rendering

    render_context(source, context)  -> rendered markup (sandboxed Jinja, no autoescape)
    render_artifact(title, markup)   -> RenderedArtifact

render_artifact() honours PDF_MODE:

    playwright  -> headless Chromium print-to-PDF
    external    -> PDFShift HTTP API
    none        -> the HTML document itself (cannot be sent for e-signature)
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict

import requests
from flask import current_app
from jinja2 import BaseLoader, TemplateError, TemplateSyntaxError
from jinja2.sandbox import ImmutableSandboxedEnvironment, SecurityError
from playwright.sync_api import Error as PlaywrightError, sync_playwright

from services.errors import AppError, ConfigurationError
from .transforms import FILTERS

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = 'application/pdf'
HTML_CONTENT_TYPE = 'text/html; charset=utf-8'

PAGE_MARGIN = '0.45in'

BASE_PRINT_CSS = """
  @page { size: letter; margin: 0.45in; }
  body { font-family: "Helvetica Neue", Arial, sans-serif; color: #0f172a; font-size: 12px; line-height: 1.35; }
  h1, h2, h3 { margin: 0 0 10px 0; }
  .section { margin-bottom: 14px; break-inside: avoid; }
  .field-row { display: flex; justify-content: space-between; gap: 8px; margin-bottom: 5px; }
  .field-label { color: #334155; font-weight: 600; }
  .signature-anchor { display: inline-block; border-bottom: 1px dashed #64748b; min-width: 220px; margin-top: 8px; padding-top: 14px; }
  .notice { border: 1px solid #d1d5db; background: #f8fafc; border-radius: 6px; padding: 8px; margin-top: 12px; font-size: 10px; }
"""

SCRIPT_TAG_PATTERN = re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE)


class RenderError(AppError):
    status_code = 502


@dataclass(frozen=True)
class RenderedArtifact:
    buffer: bytes
    content_type: str
    extension: str
    mode: str

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_CONTENT_TYPE


def _build_environment() -> ImmutableSandboxedEnvironment:
    # Template source is operator-authored; it may read the context but never reach Python internals
    env = ImmutableSandboxedEnvironment(loader=BaseLoader(), autoescape=False)
    env.filters.update(FILTERS)
    return env


def render_context(template_source: str, context: Dict[str, Any]) -> str:
    """Substitute the context into a template source."""
    env = _build_environment()
    try:
        return env.from_string(template_source).render(**context)
    except TemplateSyntaxError as e:
        raise RenderError(f"Template syntax error on line {e.lineno}: {e.message}", 400)
    except SecurityError as e:
        logger.warning(f"Blocked unsafe template expression: {e}")
        raise RenderError(f"Template uses a disallowed expression: {e}", 400)
    except TemplateError as e:
        raise RenderError(f"Template rendering failed: {e}", 400)


def sanitize_html(markup: str) -> str:
    return SCRIPT_TAG_PATTERN.sub('', markup or '')


def as_html_document(content: str, title: str) -> str:
    return f"""<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width,initial-scale=1" />
    <title>{title}</title>
    <style>{BASE_PRINT_CSS}</style>
  </head>
  <body>{content}</body>
</html>"""


def render_artifact(title: str, markup: str) -> RenderedArtifact:
    """
    Turn rendered markup into a downloadable artifact.

    Raises:
        ConfigurationError for an unknown PDF_MODE or missing credentials
        RenderError when the renderer fails
    """
    mode = current_app.config.get('PDF_MODE', 'playwright')
    html = as_html_document(sanitize_html(markup), title)

    if mode == 'none':
        return RenderedArtifact(html.encode('utf-8'), HTML_CONTENT_TYPE, 'html', 'none')
    if mode == 'external':
        return RenderedArtifact(_render_external(html), PDF_CONTENT_TYPE, 'pdf', 'external')
    if mode == 'playwright':
        return RenderedArtifact(_render_playwright(html), PDF_CONTENT_TYPE, 'pdf', 'playwright')

    raise ConfigurationError(f"Unsupported PDF_MODE: {mode}")


def _render_external(html: str) -> bytes:
    api_key = current_app.config.get('PDF_EXTERNAL_API_KEY')
    if not api_key:
        raise ConfigurationError("PDF_EXTERNAL_API_KEY is required when PDF_MODE=external.")

    try:
        response = requests.post(
            current_app.config['PDF_EXTERNAL_URL'],
            json={
                'source': html,
                'format': 'Letter',
                'margin': PAGE_MARGIN,
                'use_print': True,
            },
            auth=('api', api_key),
            timeout=current_app.config.get('PDF_EXTERNAL_TIMEOUT', 30)
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error(f"External PDF rendering failed: {e}")
        raise RenderError("External PDF rendering failed.")

    return response.content


def _render_playwright(html: str) -> bytes:
    try:
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(headless=True)
            try:
                page = browser.new_page()
                page.set_content(html, wait_until='networkidle')
                page.emulate_media(media='print')
                return page.pdf(
                    format='Letter',
                    print_background=True,
                    margin={
                        'top': PAGE_MARGIN,
                        'right': PAGE_MARGIN,
                        'bottom': PAGE_MARGIN,
                        'left': PAGE_MARGIN,
                    }
                )
            finally:
                browser.close()
    except PlaywrightError as e:
        logger.error(f"Playwright PDF rendering failed: {e}")
        raise RenderError("PDF rendering failed.")
