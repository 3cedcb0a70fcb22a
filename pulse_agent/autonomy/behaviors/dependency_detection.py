"""
Dependency detection: scores other open issues of the same team as
likely dependencies of the triggering issue, suggests the strongest ones
and warns about circular blocking chains.
"""
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Set

from .common import CLOSED_STATE_NAMES, elapsed_ms, failed_action, label_names, state_name, success_action
from ..types import BehaviorContext, BehaviorNotification, BehaviorResult
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

SUGGESTION_MARKER = "dependency suggestion"
IDENTIFIER_PATTERN = re.compile(r"\b[A-Z]+-\d+\b")
DEPENDENCY_RELATION_TYPES = ("blocks", "depends")

DEFAULT_DEPENDENCY_KEYWORDS = [
    "depends on", "blocked by", "requires", "needs", "waiting for",
    "after", "prerequisite", "must have", "relies on", "based on",
]


@dataclass(frozen=True)
class DependencyDetectionConfig:
    keyword_similarity_threshold: float = 0.6
    title_similarity_threshold: float = 0.7
    max_suggestions: int = 3
    ignore_closed_issues: bool = True
    high_point_threshold: int = 5
    candidate_limit: int = 100
    dependency_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_DEPENDENCY_KEYWORDS))


@dataclass
class DependencyCandidate:
    issue: Dict[str, Any]
    score: float
    relation_type: str

    @property
    def identifier(self) -> str:
        return self.issue.get("identifier") or self.issue.get("id", "")


def _content(issue: Dict[str, Any]) -> str:
    return f"{issue.get('title') or ''} {issue.get('description') or ''}".lower()


def _significant_tokens(text: str) -> Set[str]:
    return {token for token in text.lower().split() if len(token) > 3}


def text_similarity(text1: str, text2: str) -> float:
    """Jaccard overlap of tokens longer than three characters."""
    tokens1 = _significant_tokens(text1)
    tokens2 = _significant_tokens(text2)
    if not tokens1 or not tokens2:
        return 0.0
    return len(tokens1 & tokens2) / len(tokens1 | tokens2)


def has_significant_overlap(text: str, title: str) -> bool:
    words = [w for w in title.split() if len(w) > 3]
    if not words:
        return False
    return sum(1 for w in words if w in text) >= len(words) * 0.5


def suggest_relation_type(source: Dict[str, Any], candidate: Dict[str, Any]) -> str:
    content = _content(source)
    if "blocked by" in content or "waiting for" in content:
        return "blocks"
    if "depends on" in content or "requires" in content:
        return "depends"
    if "related to" in content or "see also" in content:
        return "relates"
    if state_name(source) in ("Todo", "Backlog") and state_name(candidate) in ("In Progress", "Done"):
        return "depends"
    return "relates"


class DependencyDetectionBehavior:
    id = "dependency_detection"
    name = "Dependency Detector"
    description = "Detects and suggests issue dependencies"
    priority = 70

    def __init__(self, tracker, config: Optional[DependencyDetectionConfig] = None):
        self.tracker = tracker
        self.config = config or DependencyDetectionConfig()
        self.enabled = True

    async def should_trigger(self, context: BehaviorContext) -> bool:
        issue = context.issue
        if not issue:
            return False
        if self.config.ignore_closed_issues and state_name(issue) in CLOSED_STATE_NAMES:
            return False

        content = _content(issue)
        has_keywords = any(keyword in content for keyword in self.config.dependency_keywords)
        has_high_points = (issue.get("estimate") or 0) >= self.config.high_point_threshold
        return has_keywords or (has_high_points and not issue.get("relations"))

    async def execute(self, context: BehaviorContext) -> BehaviorResult:
        start = time.monotonic()
        issue = context.issue
        if not issue:
            raise ValueError("Issue context is required for dependency detection")

        identifier = issue.get("identifier") or issue["id"]
        logger.info(f"[ENGINE] Running dependency detection for {identifier}")
        actions = []

        candidates = await self.detect_potential_dependencies(issue)
        if candidates:
            already = await self._already_suggested(issue["id"])
            new = [c for c in candidates if c.identifier not in already]
            if new:
                actions.append(await self._comment(
                    issue["id"],
                    self.build_suggestion(new),
                    f"Suggested {len(new)} potential dependencies",
                    suggested_count=len(new),
                    dependencies=[
                        {"id": c.issue.get("id"), "identifier": c.identifier, "relation_type": c.relation_type}
                        for c in new
                    ],
                ))

        cycles = await self.detect_circular_dependencies(issue["id"])
        if cycles:
            logger.warning(f"[ENGINE] Circular dependencies found for {identifier}: {cycles}")
            actions.append(await self._comment(
                issue["id"],
                self.build_cycle_warning(cycles),
                "Warned about circular dependencies",
                circular_paths=cycles,
            ))

        notification = None
        if cycles:
            notification = BehaviorNotification(
                title="Circular Dependency Detected",
                message=f"{identifier} is part of {len(cycles)} circular dependency chain(s).",
                priority="high",
                data={"issue_id": issue["id"], "circular_paths": cycles},
            )

        return BehaviorResult(
            success=True,
            actions=actions,
            execution_time=elapsed_ms(start),
            should_notify=notification is not None,
            notification=notification,
        )

    async def detect_potential_dependencies(self, issue: Dict[str, Any]) -> List[DependencyCandidate]:
        team_id = (issue.get("team") or {}).get("id")
        if not team_id:
            return []
        team_issues = await self.tracker.get_issues(team_id=team_id, limit=self.config.candidate_limit)

        candidates = []
        for candidate in team_issues:
            if candidate.get("id") == issue.get("id"):
                continue
            if self.config.ignore_closed_issues and state_name(candidate) in CLOSED_STATE_NAMES:
                continue
            score = self.dependency_score(issue, candidate)
            if score >= self.config.keyword_similarity_threshold:
                candidates.append(DependencyCandidate(candidate, score, suggest_relation_type(issue, candidate)))

        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:self.config.max_suggestions]

    def dependency_score(self, issue: Dict[str, Any], candidate: Dict[str, Any]) -> float:
        content = _content(issue)
        candidate_identifier = (candidate.get("identifier") or "").lower()
        candidate_title = (candidate.get("title") or "").lower()
        mentioned = bool(candidate_identifier) and candidate_identifier in content

        score = 0.0
        if mentioned:
            score += 0.8

        if mentioned or has_significant_overlap(content, candidate_title):
            for keyword in self.config.dependency_keywords:
                if keyword in content:
                    score += 0.3

        similarity = text_similarity(issue.get("title") or "", candidate.get("title") or "")
        if similarity > self.config.title_similarity_threshold:
            score += similarity * 0.4

        shared = set(label_names(issue)) & set(label_names(candidate))
        if shared:
            score += 0.2 * min(len(shared) / 3, 1)

        project_id = (issue.get("project") or {}).get("id")
        if project_id and project_id == (candidate.get("project") or {}).get("id"):
            score += 0.2

        return min(score, 1.0)

    async def detect_circular_dependencies(self, issue_id: str) -> List[List[str]]:
        """Depth-first walk over outgoing blocking relations; returns each cycle as a path of ids."""
        visited: Set[str] = set()
        cycles: List[List[str]] = []

        async def traverse(current: str, path: List[str]) -> None:
            if current in path:
                cycles.append(path[path.index(current):] + [current])
                return
            if current in visited:
                return
            visited.add(current)

            try:
                relations = await self.tracker.get_issue_relations(current)
            except Exception as e:
                logger.error(f"[ENGINE] Failed to traverse dependencies of {current}: {e}")
                return

            for relation in relations:
                if relation.get("direction") != "outgoing":
                    continue
                if relation.get("type") not in DEPENDENCY_RELATION_TYPES:
                    continue
                related_id = (relation.get("related_issue") or {}).get("id")
                if related_id:
                    await traverse(related_id, path + [current])

        await traverse(issue_id, [])
        return cycles

    async def _already_suggested(self, issue_id: str) -> Set[str]:
        try:
            comments = await self.tracker.get_issue_comments(issue_id)
        except Exception as e:
            logger.error(f"[ENGINE] Failed to check existing suggestions on {issue_id}: {e}")
            return set()

        suggested: Set[str] = set()
        for comment in comments:
            body = comment.get("body") or ""
            if SUGGESTION_MARKER in body.lower():
                suggested.update(IDENTIFIER_PATTERN.findall(body))
        return suggested

    async def _comment(self, issue_id: str, body: str, description: str, **data: Any):
        try:
            await self.tracker.create_comment(issue_id, body)
            return success_action("comment", issue_id, description, **data)
        except Exception as e:
            logger.error(f"[ENGINE] Failed to post dependency comment on {issue_id}: {e}")
            return failed_action("comment", issue_id, f"Failed: {description}", e)

    def build_suggestion(self, candidates: List[DependencyCandidate]) -> str:
        lines = [
            "Potential dependency suggestion",
            "",
            "These issues look related based on explicit references, shared labels and similar context:",
        ]
        for i, c in enumerate(candidates, 1):
            assignee = (c.issue.get("assignee") or {}).get("name") or "Unassigned"
            lines.append(
                f"{i}. {c.identifier}: {c.issue.get('title', '')} "
                f"(relation: {c.relation_type}, confidence {round(c.score * 100)}%, "
                f"{state_name(c.issue) or 'Unknown'}, {assignee})"
            )
        lines += [
            "",
            "Link them with `@saafepulse link [issue-id] as [blocks|depends|relates]`, "
            "or add the label `dependencies-reviewed` to dismiss.",
        ]
        return "\n".join(lines)

    @staticmethod
    def build_cycle_warning(cycles: List[List[str]]) -> str:
        lines = ["Circular dependencies detected", ""]
        lines += [f"{i}. {' -> '.join(path)}" for i, path in enumerate(cycles, 1)]
        lines += [
            "",
            "Review the chain and remove the link that is not truly blocking, "
            "or split the work so the pieces can ship independently.",
        ]
        return "\n".join(lines)

    def update_config(self, **overrides: Any) -> None:
        self.config = replace(self.config, **overrides)
