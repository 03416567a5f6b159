"""Builds the PromptContext handed to the scorer, enhancer and coach.

Sources, in order: the prompt text itself, the workspace (CLAUDE.md and
dependency manifests), code snippets for mentioned entities and recently
touched files, and the first and last interactions of the active session.
Everything runs under a 2 second budget; when it runs out the caller gets
None and uses its context-free prompt.
"""

import asyncio
import json
import logging
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .copilot.base_tool import CodeSnippet, InteractionContext, PromptContext
from .copilot.response_analyzer import extract_topics, normalize_file_path
from .core import Interaction, Session
from .sessions import SessionManager

logger = logging.getLogger(__name__)

CONTEXT_TIMEOUT_SECONDS = 2.0
MAX_PROMPT_LENGTH = 400
MAX_RESPONSE_LENGTH = 600
INTERACTION_COUNT = 3
MAX_SNIPPETS = 6
MAX_ENTITY_SNIPPETS = 3
MAX_SNIPPET_LENGTH = 500
MAX_SUMMARY_LENGTH = 300
MAX_RECENT_TOPICS = 5

TECH_PATTERNS: dict[str, list[re.Pattern]] = {
    "TypeScript": [re.compile(r"\btypescript\b", re.I), re.compile(r"\.tsx?\b"), re.compile(r"\binterface\s+\w+")],
    "JavaScript": [re.compile(r"\bjavascript\b", re.I), re.compile(r"\.jsx?\b")],
    "Python": [re.compile(r"\bpython\b", re.I), re.compile(r"\.py\b"), re.compile(r"\bpip\b", re.I)],
    "Rust": [re.compile(r"\brust\b", re.I), re.compile(r"\.rs\b"), re.compile(r"\bcargo\b", re.I)],
    "Go": [re.compile(r"\bgolang\b", re.I), re.compile(r"\.go\b")],
    "Java": [re.compile(r"\bjava\b", re.I), re.compile(r"\.java\b")],
    "C#": [re.compile(r"\bc#", re.I), re.compile(r"\.cs\b"), re.compile(r"\bdotnet\b", re.I)],
    "React": [re.compile(r"\breact\b", re.I), re.compile(r"\buseState\b"), re.compile(r"\buseEffect\b"), re.compile(r"\bJSX\b", re.I)],
    "Vue": [re.compile(r"\bvue\b", re.I), re.compile(r"\bvuex\b", re.I), re.compile(r"\bnuxt\b", re.I)],
    "Angular": [re.compile(r"\bangular\b", re.I), re.compile(r"\bngModule\b", re.I)],
    "Svelte": [re.compile(r"\bsvelte\b", re.I), re.compile(r"\bsveltekit\b", re.I)],
    "Next.js": [re.compile(r"\bnext\.?js\b", re.I), re.compile(r"\bgetServerSideProps\b"), re.compile(r"\bgetStaticProps\b")],
    "Express": [re.compile(r"\bexpress\b", re.I), re.compile(r"\bapp\.get\b"), re.compile(r"\bapp\.post\b")],
    "Django": [re.compile(r"\bdjango\b", re.I)],
    "FastAPI": [re.compile(r"\bfastapi\b", re.I)],
    "Flask": [re.compile(r"\bflask\b", re.I)],
    "PostgreSQL": [re.compile(r"\bpostgres(?:ql)?\b", re.I), re.compile(r"\bpg\b")],
    "MySQL": [re.compile(r"\bmysql\b", re.I)],
    "MongoDB": [re.compile(r"\bmongodb?\b", re.I), re.compile(r"\bmongoose\b", re.I)],
    "Redis": [re.compile(r"\bredis\b", re.I)],
    "SQLite": [re.compile(r"\bsqlite\b", re.I)],
    "Docker": [re.compile(r"\bdocker\b", re.I), re.compile(r"\bcontainer\b", re.I), re.compile(r"\bDockerfile\b", re.I)],
    "Kubernetes": [re.compile(r"\bkubernetes\b", re.I), re.compile(r"\bk8s\b", re.I)],
    "Git": [re.compile(r"\bgit\b", re.I), re.compile(r"\bcommit\b"), re.compile(r"\bbranch\b"), re.compile(r"\bmerge\b")],
    "npm": [re.compile(r"\bnpm\b", re.I), re.compile(r"\bpackage\.json\b")],
    "Webpack": [re.compile(r"\bwebpack\b", re.I)],
    "Vite": [re.compile(r"\bvite\b", re.I)],
    "AWS": [re.compile(r"\baws\b", re.I), re.compile(r"\bs3\b", re.I), re.compile(r"\blambda\b", re.I), re.compile(r"\bec2\b", re.I)],
    "Cloudflare": [re.compile(r"\bcloudflare\b", re.I), re.compile(r"\bworkers?\b", re.I)],
    "Vercel": [re.compile(r"\bvercel\b", re.I)],
    "Supabase": [re.compile(r"\bsupabase\b", re.I)],
    "Redux": [re.compile(r"\bredux\b", re.I), re.compile(r"\buseSelector\b"), re.compile(r"\buseDispatch\b")],
    "Zustand": [re.compile(r"\bzustand\b", re.I)],
    "MobX": [re.compile(r"\bmobx\b", re.I)],
    "Jest": [re.compile(r"\bjest\b", re.I)],
    "Vitest": [re.compile(r"\bvitest\b", re.I)],
    "Pytest": [re.compile(r"\bpytest\b", re.I)],
    "Playwright": [re.compile(r"\bplaywright\b", re.I)],
    "Cypress": [re.compile(r"\bcypress\b", re.I)],
    "GraphQL": [re.compile(r"\bgraphql\b", re.I)],
    "REST": [re.compile(r"\brest\b", re.I), re.compile(r"\bapi\b", re.I)],
    "tRPC": [re.compile(r"\btrpc\b", re.I)],
}

# Dependency name -> tech. Names ending in "/" match as prefixes.
PACKAGE_TO_TECH = {
    "react": "React", "react-dom": "React", "vue": "Vue", "@vue/": "Vue",
    "next": "Next.js", "nuxt": "Nuxt", "express": "Express", "fastify": "Fastify",
    "hono": "Hono", "svelte": "Svelte", "@sveltejs/kit": "SvelteKit", "@angular/core": "Angular",
    "typescript": "TypeScript", "@types/": "TypeScript",
    "tailwindcss": "Tailwind CSS", "sass": "Sass",
    "redux": "Redux", "@reduxjs/toolkit": "Redux Toolkit", "zustand": "Zustand", "mobx": "MobX",
    "drizzle-orm": "Drizzle ORM", "prisma": "Prisma", "@prisma/client": "Prisma", "typeorm": "TypeORM",
    "mongoose": "MongoDB", "mongodb": "MongoDB", "pg": "PostgreSQL", "mysql2": "MySQL",
    "better-sqlite3": "SQLite",
    "vitest": "Vitest", "jest": "Jest", "playwright": "Playwright", "@playwright/test": "Playwright",
    "cypress": "Cypress",
    "esbuild": "esbuild", "vite": "Vite", "webpack": "Webpack", "rollup": "Rollup",
    "wrangler": "Cloudflare Workers", "@cloudflare/": "Cloudflare", "aws-sdk": "AWS", "@aws-sdk/": "AWS",
    "firebase": "Firebase", "supabase": "Supabase", "@supabase/": "Supabase",
    "graphql": "GraphQL", "@trpc/": "tRPC", "axios": "Axios",
    # Python distributions
    "django": "Django", "fastapi": "FastAPI", "flask": "Flask", "sqlalchemy": "SQLAlchemy",
    "psycopg": "PostgreSQL", "psycopg2": "PostgreSQL", "psycopg2-binary": "PostgreSQL", "asyncpg": "PostgreSQL",
    "pymongo": "MongoDB", "redis": "Redis", "pytest": "Pytest", "pydantic": "Pydantic",
    "celery": "Celery", "boto3": "AWS", "numpy": "NumPy", "pandas": "pandas", "torch": "PyTorch",
    "httpx": "HTTPX", "requests": "Requests", "click": "Click",
}

_FILE_RE = re.compile(
    r"(?:^|[\s\"'`])([a-zA-Z_][\w\-./]*\.(?:ts|tsx|js|jsx|py|rs|go|java|cs|vue|svelte|css|scss|html|json|yaml|yml|md|sql))\b",
    re.I,
)
_FUNCTION_RE = re.compile(
    r"\b((?:use|get|set|is|has|can|should|will|fetch|load|save|update|delete|create|remove|add|handle|on|process)"
    r"[A-Z][a-zA-Z0-9]*)\b"
)
_SNAKE_FUNCTION_RE = re.compile(
    r"\b((?:get|set|is|has|fetch|load|save|update|delete|create|remove|add|handle|process)_[a-z0-9_]+)\b"
)
_CLASS_RE = re.compile(r"\bclass\s+([A-Z][a-zA-Z0-9]*)")
_COMPONENT_RE = re.compile(r"\b([A-Z][a-z0-9]+(?:[A-Z][a-zA-Z0-9]*)+)\b")
_REQUIREMENT_NAME_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._\-]*)")
_OVERVIEW_HEADER_RE = re.compile(r"^##\s*(project\s*overview|overview|about|description)", re.I)

_SKIP_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build", "out", ".next"})
_CODE_SUFFIXES = frozenset({".ts", ".tsx", ".js", ".jsx", ".py", ".rs", ".go", ".java", ".cs", ".vue", ".svelte"})
_MAX_FILES_SCANNED = 500


@dataclass
class Entity:
    name: str
    kind: str  # file | function | class | component


@dataclass
class WorkspaceInfo:
    tech_stack: list[str] = field(default_factory=list)
    summary: str | None = None


# ── Prompt extraction ────────────────────────────────────────────


def extract_tech_stack(text: str) -> list[str]:
    return [tech for tech, patterns in TECH_PATTERNS.items() if any(p.search(text) for p in patterns)]


def extract_entities(text: str) -> list[Entity]:
    """Files, functions, classes and components mentioned in a prompt, de-duplicated."""
    found: dict[str, Entity] = {}

    def add(name: str, kind: str) -> None:
        key = name.lower()
        if key not in found:
            found[key] = Entity(name, kind)

    for name in _FILE_RE.findall(text):
        add(name, "file")
    for name in _CLASS_RE.findall(text):
        add(name, "class")
    for name in _FUNCTION_RE.findall(text) + _SNAKE_FUNCTION_RE.findall(text):
        add(name, "function")
    for name in _COMPONENT_RE.findall(text):
        add(name, "component")
    return list(found.values())


# ── Workspace ────────────────────────────────────────────────────


def load_workspace_info(root: Path) -> WorkspaceInfo:
    """Tech stack and a one-paragraph summary from CLAUDE.md and dependency manifests."""
    info = WorkspaceInfo()
    claude_md = root / "CLAUDE.md"
    if claude_md.is_file():
        try:
            text = claude_md.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read %s: %s", claude_md, e)
        else:
            info.tech_stack.extend(extract_tech_stack(text))
            info.summary = extract_project_summary(text)

    for tech in _dependency_techs(root):
        if tech not in info.tech_stack:
            info.tech_stack.append(tech)
    return info


def extract_project_summary(content: str) -> str | None:
    """First paragraph under an overview heading, else under the top-level heading."""
    lines = content.split("\n")
    for i, line in enumerate(lines):
        if _OVERVIEW_HEADER_RE.match(line.strip()):
            paragraph = _next_paragraph(lines, i + 1)
            if paragraph:
                return paragraph
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("# "):
            paragraph = _next_paragraph(lines, i + 1)
            if paragraph:
                return paragraph
    return None


def techs_for_dependencies(names) -> list[str]:
    detected: list[str] = []
    for name in names:
        dep = name.lower()
        tech = PACKAGE_TO_TECH.get(dep)
        if tech is None:
            tech = next(
                (t for prefix, t in PACKAGE_TO_TECH.items() if prefix.endswith("/") and dep.startswith(prefix)),
                None,
            )
        if tech and tech not in detected:
            detected.append(tech)
    return detected


def _next_paragraph(lines: list[str], start: int) -> str | None:
    paragraph = ""
    for raw in lines[start:]:
        line = raw.strip()
        if not paragraph and not line:
            continue
        if line.startswith("#") or (paragraph and not line):
            break
        if line.startswith(("-", "*", "```")):
            break
        paragraph = f"{paragraph} {line}" if paragraph else line
        if len(paragraph) > MAX_SUMMARY_LENGTH:
            return paragraph[: MAX_SUMMARY_LENGTH - 3] + "..."
    return paragraph or None


def _dependency_techs(root: Path) -> list[str]:
    names: list[str] = []

    package_json = root / "package.json"
    if package_json.is_file():
        try:
            data = json.loads(package_json.read_text(encoding="utf-8"))
            for key in ("dependencies", "devDependencies"):
                names.extend((data.get(key) or {}).keys())
        except (json.JSONDecodeError, OSError, AttributeError) as e:
            logger.warning("Could not read %s: %s", package_json, e)

    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            project = data.get("project") or {}
            requirements = list(project.get("dependencies") or [])
            for extra in (project.get("optional-dependencies") or {}).values():
                requirements.extend(extra)
            names.extend(_requirement_names(requirements))
        except (tomllib.TOMLDecodeError, OSError) as e:
            logger.warning("Could not read %s: %s", pyproject, e)

    requirements_txt = root / "requirements.txt"
    if requirements_txt.is_file():
        try:
            lines = requirements_txt.read_text(encoding="utf-8").splitlines()
            names.extend(_requirement_names(l for l in lines if not l.strip().startswith(("#", "-"))))
        except OSError as e:
            logger.warning("Could not read %s: %s", requirements_txt, e)

    return techs_for_dependencies(names)


def _requirement_names(requirements) -> list[str]:
    names = []
    for requirement in requirements:
        match = _REQUIREMENT_NAME_RE.match(str(requirement))
        if match:
            names.append(match.group(1))
    return names


# ── Code snippets ────────────────────────────────────────────────


def snippet_from_file(path: Path, entity: str | None = None, root: Path | None = None) -> CodeSnippet | None:
    """Up to 500 chars around the first mention of ``entity`` (or the file head)."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    if not text.strip():
        return None

    start = 0
    if entity:
        index = text.find(entity)
        if index == -1:
            return None
        start = text.rfind("\n", 0, index) + 1
    display = str(path.relative_to(root)) if root and path.is_relative_to(root) else str(path)
    return CodeSnippet(
        entity_name=entity or path.name,
        file_path=display.replace("\\", "/"),
        relevant_code=text[start: start + MAX_SNIPPET_LENGTH],
    )


def snippets_for_files(paths: list[str], root: Path | None) -> list[CodeSnippet]:
    """Snippets from files an agent modified; relative paths resolve against ``root``."""
    snippets = []
    for raw in paths:
        path = Path(raw)
        if not path.is_absolute():
            if root is None:
                continue
            path = root / path
        if not path.is_file():
            continue
        snippet = snippet_from_file(path, root=root)
        if snippet is not None:
            snippets.append(snippet)
    return snippets


def _iter_code_files(root: Path):
    scanned = 0
    stack = [root]
    while stack and scanned < _MAX_FILES_SCANNED:
        directory = stack.pop()
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            continue
        for entry in entries:
            if entry.is_dir():
                if entry.name not in _SKIP_DIRS and not entry.name.startswith("."):
                    stack.append(entry)
            elif entry.suffix in _CODE_SUFFIXES:
                scanned += 1
                yield entry


def find_entity_snippets(entities: list[Entity], root: Path, limit: int = MAX_ENTITY_SNIPPETS) -> list[CodeSnippet]:
    snippets: list[CodeSnippet] = []
    wanted = list(entities)
    for entity in [e for e in wanted if e.kind == "file"]:
        for path in _iter_code_files(root):
            if path.as_posix().endswith(entity.name):
                snippet = snippet_from_file(path, root=root)
                if snippet:
                    snippet.entity_name = entity.name
                    snippets.append(snippet)
                break
        if len(snippets) >= limit:
            return snippets

    names = [e for e in wanted if e.kind != "file"]
    if not names:
        return snippets
    for path in _iter_code_files(root):
        for entity in list(names):
            snippet = snippet_from_file(path, entity.name, root=root)
            if snippet:
                snippets.append(snippet)
                names.remove(entity)
                if len(snippets) >= limit:
                    return snippets
        if not names:
            break
    return snippets


def merge_snippets(primary: list[CodeSnippet], secondary: list[CodeSnippet]) -> list[CodeSnippet]:
    """Prompt snippets first, then the rest, deduplicated by path and entity, capped at 6."""
    merged: list[CodeSnippet] = []
    seen_paths: set[str] = set()
    seen_entities: set[str] = set()
    for snippet in primary + secondary:
        path_key = normalize_file_path(snippet.file_path).lower()
        entity_key = snippet.entity_name.lower()
        if path_key in seen_paths or entity_key in seen_entities:
            continue
        seen_paths.add(path_key)
        seen_entities.add(entity_key)
        merged.append(snippet)
        if len(merged) >= MAX_SNIPPETS:
            break
    return merged


# ── Session history ──────────────────────────────────────────────


def to_interaction_context(interaction: Interaction) -> InteractionContext:
    response = interaction.response
    return InteractionContext(
        prompt=interaction.prompt.text[:MAX_PROMPT_LENGTH],
        response=response.response[:MAX_RESPONSE_LENGTH] if response and response.response else None,
        files_modified=list(response.files_modified) if response else [],
    )


def recent_topics(session: Session, limit: int = MAX_RECENT_TOPICS) -> list[str]:
    topics: list[str] = []
    for response in session.responses[:10]:
        for topic in extract_topics(response.response):
            if topic not in topics:
                topics.append(topic)
    return topics[:limit]


def session_duration_minutes(session: Session) -> int:
    end = max(session.last_activity_time, session.start_time)
    return max(0, int((end - session.start_time).total_seconds() // 60))


def recently_modified_files(session: Session, limit: int = MAX_ENTITY_SNIPPETS) -> list[str]:
    files: list[str] = []
    for response in session.responses:
        for path in response.files_modified:
            if path not in files:
                files.append(path)
            if len(files) >= limit:
                return files
    return files


@dataclass
class SessionSnapshot:
    """Copies of the session fields the context needs, taken on the event loop."""

    root: Path | None = None
    goal: str | None = None
    recent_topics: list[str] = field(default_factory=list)
    session_duration: int | None = None
    first_interactions: list[InteractionContext] = field(default_factory=list)
    last_interactions: list[InteractionContext] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)


class ContextBuilder:
    """Assembles a PromptContext from the prompt, workspace and active session."""

    def __init__(
        self,
        session_manager: SessionManager,
        workspace_root: Path | None = None,
        timeout: float = CONTEXT_TIMEOUT_SECONDS,
    ):
        self.session_manager = session_manager
        self.workspace_root = workspace_root
        self.timeout = timeout

    async def build(self, prompt_text: str) -> PromptContext | None:
        """Return the context, or None if the budget expires or gathering fails.

        The session tree is only read here, on the loop; the worker thread
        sees the snapshot and the file system.
        """
        try:
            snapshot = self.snapshot()
            return await asyncio.wait_for(
                asyncio.to_thread(self.gather_workspace, prompt_text, snapshot), self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Context gathering timed out after %.1fs", self.timeout)
            return None
        except Exception as e:
            logger.warning("Context gathering failed: %s", e)
            return None

    def gather(self, prompt_text: str) -> PromptContext:
        return self.gather_workspace(prompt_text, self.snapshot())

    def snapshot(self) -> SessionSnapshot:
        session = self.session_manager.get_active_session()
        snapshot = SessionSnapshot(root=self.resolve_root(session))
        if session is None:
            return snapshot
        snapshot.goal = session.goal
        snapshot.recent_topics = recent_topics(session)
        snapshot.session_duration = session_duration_minutes(session)
        snapshot.first_interactions = [
            to_interaction_context(i)
            for i in self.session_manager.get_first_interactions(INTERACTION_COUNT, session.id)
            if i.prompt.text
        ]
        snapshot.last_interactions = [
            to_interaction_context(i)
            for i in self.session_manager.get_last_interactions(INTERACTION_COUNT, session.id)
            if i.prompt.text
        ]
        snapshot.modified_files = recently_modified_files(session)
        return snapshot

    def gather_workspace(self, prompt_text: str, snapshot: SessionSnapshot) -> PromptContext:
        root = snapshot.root
        tech_stack = extract_tech_stack(prompt_text)
        entities = extract_entities(prompt_text)

        workspace = load_workspace_info(root) if root else WorkspaceInfo()
        for tech in workspace.tech_stack:
            if tech not in tech_stack:
                tech_stack.append(tech)

        snippets: list[CodeSnippet] = []
        if root:
            from_prompt = find_entity_snippets(entities, root)
            from_session = snippets_for_files(snapshot.modified_files, root)
            snippets = merge_snippets(from_prompt, from_session)

        context = PromptContext(
            goal=snapshot.goal,
            tech_stack=tech_stack,
            recent_topics=list(snapshot.recent_topics),
            code_snippets=snippets,
            session_duration=snapshot.session_duration,
            first_interactions=list(snapshot.first_interactions),
            last_interactions=list(snapshot.last_interactions),
            project_summary=workspace.summary,
        )
        logger.debug(
            "Context: %d techs, %d snippets, %d+%d interactions",
            len(context.tech_stack), len(context.code_snippets),
            len(context.first_interactions), len(context.last_interactions),
        )
        return context

    def resolve_root(self, session: Session | None) -> Path | None:
        """The configured workspace, else the active project's path if it exists."""
        if self.workspace_root is not None:
            return self.workspace_root
        if session is None:
            return None
        project = self.session_manager.get_project(session.project_id)
        if project and project.path and Path(project.path).is_dir():
            return Path(project.path)
        return None
