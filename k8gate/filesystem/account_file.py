"""Account file (passwd) rendering from a Jinja2 template."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import jinja2

from k8gate.exceptions import TemplateError
from k8gate.filesystem.atomic import atomic_write_text

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from k8gate.services.application_service import Application

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".j2"


def _template_filename(template_name: str) -> str:
    if template_name.endswith(TEMPLATE_SUFFIX):
        return template_name
    return f"{template_name}{TEMPLATE_SUFFIX}"


def _application_context(application: Application) -> dict[str, Any]:
    return {
        "id": application.repository,
        "repository": application.repository,
        "namespace": application.namespace,
        "ssh_user": application.ssh_user,
        "containers": [c.to_dict() for c in application.containers],
        "users": list(application.users),
    }


def render_account_file(
    template_dir: Path, template_name: str, applications: Iterable[Application]
) -> str:
    """Render the account file for ``applications``.

    Undefined variables are errors rather than empty strings, so a template
    that references a missing field fails instead of producing broken entries.

    Raises:
        TemplateError: If the template is missing, malformed, or fails to render.
    """
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(template_dir),
        undefined=jinja2.StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    filename = _template_filename(template_name)
    try:
        template = env.get_template(filename)
        return template.render(applications=[_application_context(a) for a in applications])
    except jinja2.TemplateNotFound as exc:
        msg = f"Account template {filename} not found in {template_dir}"
        raise TemplateError(msg) from exc
    except jinja2.TemplateError as exc:
        msg = f"Failed to render account template {filename}: {exc}"
        raise TemplateError(msg) from exc


def write_account_file(path: Path, content: str) -> None:
    """Atomically replace the account file.

    Raises:
        TemplateError: If the file cannot be written. The previous file is kept.
    """
    try:
        atomic_write_text(path, content)
    except OSError as exc:
        msg = f"Failed to write account file {path}: {exc}"
        raise TemplateError(msg) from exc
    logger.info("Updated %s", path)
