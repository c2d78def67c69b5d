# backend/src/wikigen/generation/prompts.py
"""Prompt templates for wiki generation."""

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from wikigen.generation.models import (
        GeneratedPage,
        PlannedPage,
        RepositorySnapshot,
        SourceFile,
        WikiPlan,
    )


@dataclass
class PromptTemplate:
    """A template for generating prompts with variable substitution."""

    template: str

    def render(self, **kwargs: Any) -> str:
        """Render the template with the given variables.

        Args:
            **kwargs: Variables to substitute into the template.

        Returns:
            The rendered template string.

        Raises:
            KeyError: If a required variable is missing.
        """
        return self.template.format(**kwargs)


# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT = """You are a technical documentation expert writing one page of a
cross-linked wiki for a codebase. Be precise and factual: only document what
exists in the code. Use clear language appropriate for developers, organise the
page with headings, and link to other wiki pages whenever you mention a topic
they cover. Output clean Markdown."""


# =============================================================================
# Codebase Context
# =============================================================================
# Registered once per run with the model's context cache. Every later call
# refers to it by handle instead of resending the codebase.

CODEBASE_CONTEXT_TEMPLATE = PromptTemplate(
    """# Repository: {full_name}
{description_line}{language_line}
## README
{readme}

## Package Manifest
{manifest}

## File Tree
{file_tree}

## All Files with Content
{file_blocks}
"""
)

FILE_BLOCK_TEMPLATE = PromptTemplate(
    """
### File: {path}
Language: {language}
Size: {size} bytes

```{language}
{content}
```
"""
)

FILE_SEPARATOR = "\n---\n"


def format_file_block(source_file: "SourceFile") -> str:
    return FILE_BLOCK_TEMPLATE.render(
        path=source_file.path,
        language=source_file.language,
        size=source_file.size or len(source_file.content),
        content=source_file.content,
    )


def get_codebase_context(snapshot: "RepositorySnapshot") -> str:
    """Render the full codebase document for context caching.

    Args:
        snapshot: Repository content to embed.

    Returns:
        One Markdown document holding metadata, README, manifest, file tree
        and every file's content.
    """
    manifest = (
        json.dumps(snapshot.package_manifest, indent=2)
        if snapshot.package_manifest
        else "No package manifest"
    )
    return CODEBASE_CONTEXT_TEMPLATE.render(
        full_name=snapshot.full_name,
        description_line=(
            f"Description: {snapshot.description}\n" if snapshot.description else ""
        ),
        language_line=(
            f"Primary Language: {snapshot.primary_language}\n"
            if snapshot.primary_language
            else ""
        ),
        readme=snapshot.readme or "No README available",
        manifest=manifest,
        file_tree="\n".join(f.path for f in snapshot.files),
        file_blocks=FILE_SEPARATOR.join(format_file_block(f) for f in snapshot.files),
    )


# =============================================================================
# Planning
# =============================================================================
# Page archetypes are guidance for the planner, not a fixed menu.

PAGE_ARCHETYPES: Mapping[str, dict[str, str]] = {
    "Overview": {
        "summary": "High-level introduction, purpose, key features",
        "use": "readme_content, file_structure",
        "style": "Narrative, beginner-friendly",
    },
    "Getting Started": {
        "summary": "Installation, setup, first steps",
        "use": "readme_content, example files",
        "style": "Step-by-step tutorial",
    },
    "API Reference": {
        "summary": "Function/class signatures, types",
        "use": "Extract function signatures (NOT implementations)",
        "format": "fn name(params): returnType // description",
        "style": "Technical reference",
    },
    "Architecture": {
        "summary": "System design, component relationships",
        "use": "file_structure, type definitions",
        "style": "High-level diagrams and explanations",
    },
    "Examples": {
        "summary": "Practical usage patterns",
        "use": "FULL example code with implementations",
        "style": "Working code with explanations",
    },
    "Configuration": {
        "summary": "Setup options, environment variables",
        "use": "Config files, .env examples",
        "style": "Reference with examples",
    },
    "Deployment": {
        "summary": "How to deploy/build",
        "use": "Package scripts, Dockerfile, CI configs",
        "style": "Step-by-step guide",
    },
    "Troubleshooting": {
        "summary": "Common issues and solutions",
        "style": "Problem/solution format",
    },
}


def format_page_archetypes(archetypes: Mapping[str, dict[str, str]] = PAGE_ARCHETYPES) -> str:
    """Render the archetype catalog as a numbered list for the planning prompt."""
    lines = ["Common wiki page types you might want to create:", ""]
    for index, (name, info) in enumerate(archetypes.items(), start=1):
        lines.append(f"{index}. **{name}** - {info.get('summary', '')}")
        for label in ("use", "format", "style"):
            if info.get(label):
                lines.append(f"   - {label.capitalize()}: {info[label]}")
        lines.append("")
    lines.append("Choose the pages that make sense for THIS repository.")
    return "\n".join(lines)


PLAN_TEMPLATE = PromptTemplate(
    """Using the cached codebase above, plan wiki pages for the repository "{owner}/{repo}".

{archetypes}

For EACH page you want to create, specify:
- title: Clear page title
- slug: URL-friendly slug (lowercase, hyphens)
- url: Full wiki URL path ({url_pattern})
- systemPrompt: Detailed instructions for generating THIS specific page
  * What content to include
  * What format/style to use
  * Any special requirements (e.g., "show signatures only", "include full code examples")
- dependsOn: Array of page slugs whose content this page builds on (empty array if none)
- priority: 1-10 (10 = highest, generate first)

IMPORTANT in systemPrompt:
- For API/Reference pages: "Extract ONLY function/class signatures. Format: fn name(params): returnType. NO implementations."
- For Example pages: "Include FULL working code with explanations."
- For Overview/Architecture: "High-level concepts, no code implementations."

Only list dependencies that are genuinely needed; pages with no dependencies are
generated in parallel.

Return ONLY valid JSON matching this structure:
{{
  "pages": [
    {{
      "title": "string",
      "slug": "string",
      "url": "string",
      "systemPrompt": "string",
      "dependsOn": ["string"],
      "priority": number
    }}
  ]
}}"""
)


def get_plan_prompt(
    owner: str,
    repo: str,
    archetypes: Mapping[str, dict[str, str]] = PAGE_ARCHETYPES,
) -> str:
    """Generate the prompt asking the model for a wiki plan.

    Args:
        owner: Repository owner.
        repo: Repository name.
        archetypes: Page archetype catalog used as guidance.

    Returns:
        The rendered planning prompt.
    """
    return PLAN_TEMPLATE.render(
        owner=owner,
        repo=repo,
        archetypes=format_page_archetypes(archetypes),
        url_pattern=f"/wiki/{owner}/{repo}/{{slug}}",
    )


# =============================================================================
# Page Generation
# =============================================================================

PAGE_TEMPLATE = PromptTemplate(
    """PAGE BRIEF: {instructions}

Generate the "{title}" wiki page.

## Available Wiki Pages for Cross-Referencing
You can link to these pages in your content using markdown links:
{page_directory}

Example: [See the API Reference]({example_url})

When mentioning topics covered by other pages, ALWAYS add a link to that page.
{dependency_section}
The entire codebase is in the cached context above. Use it to generate this page.

IMPORTANT: Return ONLY clean markdown. No JSON, no code blocks wrapping the markdown.
Start directly with the content."""
)

DEPENDENCY_SECTION_TEMPLATE = PromptTemplate(
    """
You can reference and build upon these already-generated pages:
{dependency_context}

When referencing them, use markdown links: {dependency_links}
"""
)

DEPENDENCY_SEPARATOR = "\n\n---\n\n"


def format_page_directory(plan: "WikiPlan") -> str:
    return "\n".join(f"- [{p.title}]({p.url}) - {p.slug}" for p in plan)


def _example_url(plan: "WikiPlan", fallback: str = "/wiki/api-reference") -> str:
    for page in plan:
        if "api" in page.slug:
            return page.url
    return fallback


def get_page_prompt(
    page: "PlannedPage",
    plan: "WikiPlan",
    dependencies: list["GeneratedPage"],
) -> str:
    """Generate the prompt for a single wiki page.

    Args:
        page: The planned page to generate.
        plan: The full plan, listed so the model can cross-link any page.
        dependencies: Already-generated pages this page depends on, inlined
            in full.

    Returns:
        The rendered page prompt.
    """
    if dependencies:
        dependency_context = DEPENDENCY_SEPARATOR.join(
            f'## Content from "{dep.title}" ({dep.url})\n\n{dep.content}' for dep in dependencies
        )
        dependency_section = DEPENDENCY_SECTION_TEMPLATE.render(
            dependency_context=dependency_context,
            dependency_links=", ".join(f"[{dep.title}]({dep.url})" for dep in dependencies),
        )
    else:
        dependency_section = ""

    return PAGE_TEMPLATE.render(
        instructions=page.instructions or f"Write the {page.title} page.",
        title=page.title,
        page_directory=format_page_directory(plan),
        example_url=_example_url(plan),
        dependency_section=dependency_section,
    )
