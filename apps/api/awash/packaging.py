"""Zip packaging of generated projects.

The archive holds the project files plus a Vite ``package.json``, a README,
an ``.env.example`` and install notes, all at the archive root.
"""

from __future__ import annotations

import io
import json
import logging
import posixpath
import zipfile
from typing import Any

from awash.errors import InvalidParamsError
from awash.schemas import PackageDependency


logger = logging.getLogger(__name__)

BASE_DEPENDENCIES = {
    "@radix-ui/react-dialog": "^1.1.14",
    "@radix-ui/react-slot": "^1.2.3",
    "@radix-ui/react-toast": "^1.2.14",
    "@tanstack/react-query": "^5.90.2",
    "class-variance-authority": "^0.7.1",
    "clsx": "^2.1.1",
    "lucide-react": "^0.462.0",
    "react": "^18.3.1",
    "react-dom": "^18.3.1",
    "react-router-dom": "^6.30.1",
    "tailwind-merge": "^2.6.0",
    "zod": "^3.25.76",
}

DEV_DEPENDENCIES = {
    "@types/react": "^18.3.1",
    "@types/react-dom": "^18.3.0",
    "@vitejs/plugin-react-swc": "^3.5.0",
    "autoprefixer": "^10.4.18",
    "postcss": "^8.4.35",
    "tailwindcss": "^3.4.1",
    "typescript": "^5.2.2",
    "vite": "^5.1.0",
}

ENV_EXAMPLE = """# Backend configuration (optional)
VITE_API_URL=http://localhost:8000/api

# Add your other environment variables here
"""

INSTALL_TEMPLATE = """# Installation

1. Extract the archive.
2. Install the {dependency_count} production and {dev_dependency_count} development dependencies:

```bash
npm install
```

3. Optionally copy `.env.example` to `.env` and fill in your configuration.
4. Start the development server:

```bash
npm run dev
```

The app runs at http://localhost:5173.

## Scripts
- `npm run dev` - development server
- `npm run build` - production build
- `npm run preview` - preview the production build
"""

README_TEMPLATE = """# {project_name}

React + TypeScript + Vite project, styled with Tailwind CSS.

## Quick start

```bash
npm install
npm run dev
```

## Added dependencies

{dependency_lines}

See INSTALL.md for details.
"""


def normalize_path(path: str) -> str:
    """Archive path for ``path``; rejects paths that leave the archive root."""
    cleaned = path.replace("\\", "/").strip()
    if not cleaned or cleaned.startswith("/") or ":" in cleaned.split("/")[0]:
        raise InvalidParamsError(f"Invalid file path: {path!r}")
    normalized = posixpath.normpath(cleaned)
    if normalized in (".", "..") or normalized.startswith("../"):
        raise InvalidParamsError(f"File path escapes the project root: {path!r}")
    return normalized


def build_package_json(project_name: str, dependencies: list[PackageDependency]) -> dict[str, Any]:
    return {
        "name": project_name,
        "private": True,
        "version": "0.0.0",
        "type": "module",
        "scripts": {
            "dev": "vite",
            "build": "tsc && vite build",
            "preview": "vite preview",
        },
        "dependencies": {
            **BASE_DEPENDENCIES,
            **{dep.name: dep.version or "latest" for dep in dependencies},
        },
        "devDependencies": dict(DEV_DEPENDENCIES),
    }


def build_readme(project_name: str, dependencies: list[PackageDependency]) -> str:
    lines = [
        f"- **{dep.name}** ({dep.version or 'latest'}): {dep.reason or dep.category or ''}".rstrip(": ")
        for dep in dependencies
    ]
    return README_TEMPLATE.format(
        project_name=project_name,
        dependency_lines="\n".join(lines) or "None beyond the base stack.",
    )


def package_project(
    files: dict[str, str],
    dependencies: list[PackageDependency] | None = None,
    project_name: str = "my-app",
) -> bytes:
    """Build the project archive and return the zip bytes.

    Raises:
        InvalidParamsError: a file path is absolute or escapes the root
    """
    dependencies = dependencies or []
    package_json = build_package_json(project_name, dependencies)
    generated = {
        "package.json": json.dumps(package_json, indent=2) + "\n",
        "README.md": build_readme(project_name, dependencies),
        ".env.example": ENV_EXAMPLE,
        "INSTALL.md": INSTALL_TEMPLATE.format(
            dependency_count=len(package_json["dependencies"]),
            dev_dependency_count=len(package_json["devDependencies"]),
        ),
    }

    entries: dict[str, str] = {}
    for path, content in files.items():
        entries[normalize_path(path)] = content
    for path, content in generated.items():
        if path in entries:
            logger.warning(f"Project file {path} replaced by the generated one")
        entries[path] = content

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in sorted(entries):
            archive.writestr(path, entries[path])

    logger.info(f"Packaged {project_name}: {len(files)} file(s), {len(dependencies)} added dependencies")
    return buffer.getvalue()
