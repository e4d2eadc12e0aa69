"""Consistency engine: pure, order-independent reducers over relay events."""

from relaysync.engines.consistency.labels import (
    ROLE_NS,
    assignments_for,
    build_role_label_event,
    effective_labels,
    extract_role_assignments,
    group_labels,
    to_natural_label,
)
from relaysync.engines.consistency.models import (
    BranchChange,
    EffectiveLabelSet,
    PatchGraph,
    PatchNode,
    RefHead,
    RepoState,
    RoleAssignments,
    StatusRecord,
    Thread,
)
from relaysync.engines.consistency.patches import build_patch_graph, parent_ids
from relaysync.engines.consistency.repo_state import (
    branch_update_dedupe_key,
    diff_branch_heads,
    merge_repo_state,
    overlay_latest_repo_states,
)
from relaysync.engines.consistency.status import STATUS_RANK, resolve_status
from relaysync.engines.consistency.threads import assemble_thread, targets_root

__all__ = [
    "ROLE_NS",
    "STATUS_RANK",
    "BranchChange",
    "EffectiveLabelSet",
    "PatchGraph",
    "PatchNode",
    "RefHead",
    "RepoState",
    "RoleAssignments",
    "StatusRecord",
    "Thread",
    "assemble_thread",
    "assignments_for",
    "branch_update_dedupe_key",
    "build_patch_graph",
    "build_role_label_event",
    "diff_branch_heads",
    "effective_labels",
    "extract_role_assignments",
    "group_labels",
    "merge_repo_state",
    "overlay_latest_repo_states",
    "parent_ids",
    "resolve_status",
    "targets_root",
    "to_natural_label",
]
