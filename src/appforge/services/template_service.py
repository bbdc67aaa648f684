from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from ..core.ids import generate_sandbox_session_id
from ..domain.agent_models import (
    DEFAULT_SELECTED_TEMPLATE,
    InferenceContext,
    TemplateDetails,
    TemplateFile,
    TemplateResult,
    TemplateSelection,
)


logger = logging.getLogger("appforge.templates")


@dataclass(frozen=True)
class ProjectTemplate:
    name: str
    description: str
    language: str
    frameworks: Tuple[str, ...]
    keywords: Tuple[str, ...]
    files: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def details(self) -> TemplateDetails:
        return TemplateDetails(
            name=self.name,
            description=self.description,
            language=self.language,
            frameworks=list(self.frameworks),
            files=[TemplateFile(file_path=path, file_contents=body) for path, body in self.files],
        )


_VITE_INDEX = '<!doctype html>\n<html lang="en">\n  <body>\n    <div id="root"></div>\n    <script type="module" src="/src/main.tsx"></script>\n  </body>\n</html>\n'

# Keep the catalog small and in code; the real skeletons live with the sandbox.
_TEMPLATES: List[ProjectTemplate] = [
    ProjectTemplate(
        name="react-vite",
        description="Single page React app with Vite, TypeScript and Tailwind.",
        language="typescript",
        frameworks=("react", "vite", "tailwind"),
        keywords=("app", "website", "dashboard", "landing", "page", "game", "todo", "react", "ui", "tool"),
        files=(
            ("package.json", '{\n  "name": "app",\n  "private": true,\n  "type": "module"\n}\n'),
            ("index.html", _VITE_INDEX),
            ("src/main.tsx", "import React from 'react';\n"),
            ("src/App.tsx", "export default function App() {\n  return null;\n}\n"),
        ),
    ),
    ProjectTemplate(
        name="next-fullstack",
        description="Next.js app router project with API routes.",
        language="typescript",
        frameworks=("react", "next"),
        keywords=("next", "nextjs", "ssr", "blog", "seo", "fullstack", "auth", "login", "store", "shop"),
        files=(
            ("package.json", '{\n  "name": "app",\n  "private": true\n}\n'),
            ("app/layout.tsx", "export default function RootLayout({ children }) {\n  return children;\n}\n"),
            ("app/page.tsx", "export default function Page() {\n  return null;\n}\n"),
        ),
    ),
    ProjectTemplate(
        name="vue-vite",
        description="Vue 3 single page app with Vite.",
        language="typescript",
        frameworks=("vue", "vite"),
        keywords=("vue", "nuxt", "pinia"),
        files=(
            ("package.json", '{\n  "name": "app",\n  "private": true,\n  "type": "module"\n}\n'),
            ("src/main.ts", "import { createApp } from 'vue';\n"),
            ("src/App.vue", "<template><div /></template>\n"),
        ),
    ),
    ProjectTemplate(
        name="worker-api",
        description="HTTP JSON API with Hono on a serverless worker.",
        language="typescript",
        frameworks=("hono",),
        keywords=("api", "backend", "rest", "endpoint", "webhook", "json", "service", "server"),
        files=(
            ("package.json", '{\n  "name": "api",\n  "private": true\n}\n'),
            ("src/index.ts", "import { Hono } from 'hono';\n\nconst app = new Hono();\nexport default app;\n"),
        ),
    ),
]

_WORD_RE = re.compile(r"[a-z0-9]+")


def list_templates() -> List[ProjectTemplate]:
    return list(_TEMPLATES)


def get_template(name: str) -> Optional[ProjectTemplate]:
    for template in _TEMPLATES:
        if template.name == name:
            return template
    return None


def _score(template: ProjectTemplate, words: Iterable[str]) -> float:
    vocab = set(template.keywords) | set(template.frameworks)
    hits = [w for w in words if w in vocab]
    return float(len(hits))


class TemplateService:
    """Selects a project skeleton for a query."""

    def __init__(self, templates: Optional[List[ProjectTemplate]] = None) -> None:
        self._templates = list(templates) if templates is not None else list(_TEMPLATES)

    def select(self, query: str, selected_template: str = DEFAULT_SELECTED_TEMPLATE) -> Tuple[ProjectTemplate, TemplateSelection]:
        if selected_template and selected_template != DEFAULT_SELECTED_TEMPLATE:
            for template in self._templates:
                if template.name == selected_template:
                    return template, TemplateSelection(
                        selected_template_name=template.name,
                        reasoning="Template selected explicitly by the user.",
                        score=1.0,
                    )
            logger.info("template_unknown_falling_back_to_auto", extra={"selected_template": selected_template})

        words = _WORD_RE.findall((query or "").lower())
        ranked = sorted(
            ((_score(t, words), idx, t) for idx, t in enumerate(self._templates)),
            key=lambda item: (-item[0], item[1]),
        )
        score, _, best = ranked[0]
        reasoning = (
            f"Matched {int(score)} keyword(s) from the request."
            if score > 0
            else "No strong signal in the request; using the default template."
        )
        return best, TemplateSelection(selected_template_name=best.name, reasoning=reasoning, score=score)

    async def get_template_for_query(
        self,
        context: InferenceContext,
        query: str,
        selected_template: str = DEFAULT_SELECTED_TEMPLATE,
    ) -> TemplateResult:
        template, selection = self.select(query, selected_template)
        sandbox_session_id = generate_sandbox_session_id()
        logger.info(
            "template_selected",
            extra={
                "agent_id": context.agent_id,
                "template": template.name,
                "score": selection.score,
                "sandbox_session_id": sandbox_session_id,
            },
        )
        return TemplateResult(
            sandbox_session_id=sandbox_session_id,
            template_details=template.details(),
            selection=selection,
        )


_service: Optional[TemplateService] = None


def get_template_service() -> TemplateService:
    global _service
    if _service is None:
        _service = TemplateService()
    return _service
