"""Relationship graph of repositories and tools, derived from command history.

The graph is never stored: every call recomputes it from the most recent
sessions. Repos are linked when they are active in the same session; a repo
is linked to each tool invoked while it was the git context.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from itertools import combinations
from typing import Annotated, Literal, Union

import structlog
from pydantic import BaseModel, Field

from .db import Store
from .models import Command, Session


logger = structlog.get_logger(__name__)

SESSION_LIMIT = 500

# Recognized tools need fewer uses to appear than unrecognized first tokens.
KNOWN_TOOL_MIN_USES = 3
OTHER_TOOL_MIN_USES = 5

KNOWN_TOOLS = frozenset({
    "git", "cargo", "docker", "npm", "npx", "pnpm", "yarn", "bun", "node", "python",
    "python3", "pip", "pip3", "make", "cmake", "gcc", "g++", "clang", "rustc", "rustup",
    "go", "java", "javac", "mvn", "gradle", "ruby", "gem", "bundle", "rails", "php",
    "composer", "swift", "xcodebuild", "kubectl", "terraform", "ansible", "vagrant",
    "brew", "apt", "yum", "pacman", "ssh", "scp", "rsync", "curl", "wget", "grep",
    "find", "sed", "awk", "cat", "less", "vim", "nvim", "nano", "emacs", "code",
    "tmux", "screen", "htop", "top", "ps", "kill", "systemctl", "journalctl",
    "tar", "zip", "unzip", "gzip", "ls", "cd", "cp", "mv", "rm", "mkdir", "chmod",
    "chown", "ln", "echo", "env", "export", "source", "eval", "deno", "tsx", "ts-node",
    "jest", "pytest", "rspec", "mocha", "vitest", "eslint", "prettier", "tsc",
    "podman", "nix", "just", "task", "watchexec", "ag", "rg", "fd", "bat", "exa",
    "jq", "yq", "helm", "skaffold", "minikube", "kind",
})


class RepoNode(BaseModel):
    type: Literal["repo"] = "repo"
    id: str
    label: str
    commands: int
    sessions: int
    failures: int
    last_active: int
    branches: list[str]


class ToolNode(BaseModel):
    type: Literal["tool"] = "tool"
    id: str
    label: str
    commands: int
    sessions: int
    failures: int
    repos: list[str]


class RepoRepoEdge(BaseModel):
    type: Literal["repo-repo"] = "repo-repo"
    source: str
    target: str
    shared_sessions: int


class RepoToolEdge(BaseModel):
    type: Literal["repo-tool"] = "repo-tool"
    source: str
    target: str
    weight: int


Node = Annotated[Union[RepoNode, ToolNode], Field(discriminator="type")]
Edge = Annotated[Union[RepoRepoEdge, RepoToolEdge], Field(discriminator="type")]


class Graph(BaseModel):
    nodes: list[Node] = []
    edges: list[Edge] = []


@dataclass
class _RepoStats:
    commands: int = 0
    sessions: int = 0
    failures: int = 0
    last_active: int = 0
    branches: set[str] = field(default_factory=set)


@dataclass
class _ToolStats:
    commands: int = 0
    failures: int = 0
    sessions: set[str] = field(default_factory=set)
    repos: set[str] = field(default_factory=set)


def repo_display_name(repo: str) -> str:
    """Last path segment of a repo identifier."""
    return repo.rstrip("/").rsplit("/", 1)[-1] or repo


def tool_name(command_text: str) -> str:
    """First whitespace-delimited token, basename only, lower-cased. May be empty."""
    tokens = command_text.split()
    if not tokens:
        return ""
    return tokens[0].rsplit("/", 1)[-1].lower()


def tool_node_id(name: str) -> str:
    return f"tool:{name}"


def keep_tool(name: str, uses: int, known_tools: frozenset[str] = KNOWN_TOOLS) -> bool:
    if name in known_tools:
        return uses >= KNOWN_TOOL_MIN_USES
    return uses >= OTHER_TOOL_MIN_USES


def build_graph_from_history(
    history: Iterable[tuple[Session, list[Command]]],
    known_tools: frozenset[str] = KNOWN_TOOLS,
) -> Graph:
    """Aggregate (session, commands) pairs into repo/tool nodes and weighted edges.

    Repos are keyed by display name, so distinct repo paths sharing a last
    segment merge into one node.
    """
    repos: dict[str, _RepoStats] = defaultdict(_RepoStats)
    tools: dict[str, _ToolStats] = defaultdict(_ToolStats)
    co_occurrence: dict[tuple[str, str], int] = defaultdict(int)
    repo_tool_uses: dict[tuple[str, str], int] = defaultdict(int)

    for session, commands in history:
        by_repo: dict[str, list[Command]] = defaultdict(list)
        for cmd in commands:
            if cmd.git_repo:
                by_repo[repo_display_name(cmd.git_repo)].append(cmd)

        for name, repo_cmds in by_repo.items():
            stats = repos[name]
            stats.commands += len(repo_cmds)
            stats.sessions += 1
            stats.failures += sum(1 for c in repo_cmds if c.failed)
            stats.last_active = max(stats.last_active, session.start_time)
            stats.branches.update(c.git_branch for c in repo_cmds if c.git_branch)

        # One increment per session, keyed by the lexicographically ordered pair.
        for pair in combinations(sorted(by_repo), 2):
            co_occurrence[pair] += 1

        for cmd in commands:
            name = tool_name(cmd.command_text)
            if not name:
                continue
            stats = tools[name]
            stats.commands += 1
            if cmd.failed:
                stats.failures += 1
            stats.sessions.add(session.id)
            if cmd.git_repo:
                repo = repo_display_name(cmd.git_repo)
                stats.repos.add(repo)
                repo_tool_uses[(repo, name)] += 1

    kept = {name for name, stats in tools.items() if keep_tool(name, stats.commands, known_tools)}

    graph = Graph()
    for name in sorted(repos):
        stats = repos[name]
        graph.nodes.append(
            RepoNode(
                id=name,
                label=name,
                commands=stats.commands,
                sessions=stats.sessions,
                failures=stats.failures,
                last_active=stats.last_active,
                branches=sorted(stats.branches),
            )
        )
    for name in sorted(kept):
        stats = tools[name]
        graph.nodes.append(
            ToolNode(
                id=tool_node_id(name),
                label=name,
                commands=stats.commands,
                sessions=len(stats.sessions),
                failures=stats.failures,
                repos=sorted(stats.repos),
            )
        )

    for (a, b), count in sorted(co_occurrence.items()):
        graph.edges.append(RepoRepoEdge(source=a, target=b, shared_sessions=count))
    for (repo, name), count in sorted(repo_tool_uses.items()):
        if name in kept:
            graph.edges.append(RepoToolEdge(source=repo, target=tool_node_id(name), weight=count))

    return graph


def build_graph(store: Store, session_limit: int = SESSION_LIMIT) -> Graph:
    """Graph over the ``session_limit`` most recent sessions."""
    sessions = store.sessions_page(session_limit, 0)
    history = ((s, store.commands_in_session(s.id)) for s in sessions)
    graph = build_graph_from_history(history)
    logger.debug(
        "graph.built", sessions=len(sessions), nodes=len(graph.nodes), edges=len(graph.edges)
    )
    return graph
