"""Prompt template registry with section extraction and versioning."""
from __future__ import annotations
from pathlib import Path
import hashlib

TEMPLATES_DIR = Path(__file__).parent / "templates"

SYSTEM_PROMPT_HEADER = "## System Prompt"


class PromptRegistry:
    """Loads markdown prompt templates and caches their system-prompt section.

    A template file may carry notes and examples around the prompt itself;
    only the text between ``## System Prompt`` and the next ``## `` header is
    sent to the model.  Files without that header are used whole.
    """

    def __init__(self, templates_dir: Path | None = None):
        self._dir = templates_dir or TEMPLATES_DIR
        self._cache: dict[str, str] = {}
        self._hashes: dict[str, str] = {}

    def load_template(self, name: str) -> str:
        """Load a raw template by name (e.g., 'shipment_parser')."""
        if name not in self._cache:
            path = self._dir / f"{name}.md"
            if not path.exists():
                raise FileNotFoundError(f"Prompt template not found: {path}")
            self._cache[name] = path.read_text(encoding="utf-8")
        return self._cache[name]

    def system_prompt(self, name: str, variables: dict | None = None) -> str:
        """Return the system-prompt section of *name* with ``{key}`` values injected."""
        prompt = extract_system_prompt(self.load_template(name))
        if variables:
            for key, value in variables.items():
                prompt = prompt.replace(f"{{{key}}}", str(value))
        return prompt

    def get_hash(self, template_name: str) -> str:
        """Get SHA-256 hash of a template (for reproducibility tracking)."""
        if template_name not in self._hashes:
            content = self.load_template(template_name)
            self._hashes[template_name] = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
        return self._hashes[template_name]

    def get_version(self, template_name: str) -> str:
        """Get version string for a template (hash-based)."""
        return f"v1.0-{self.get_hash(template_name)[:8]}"


def extract_system_prompt(markdown: str) -> str:
    """Return the body of the ``## System Prompt`` section of *markdown*."""
    lines = markdown.splitlines()
    capturing = False
    captured: list[str] = []
    for line in lines:
        stripped = line.lstrip()
        if stripped.startswith(SYSTEM_PROMPT_HEADER):
            capturing = True
            continue
        if capturing and stripped.startswith("## "):
            break
        if capturing:
            captured.append(line)
    if not capturing:
        return markdown.strip()
    return "\n".join(captured).strip()
