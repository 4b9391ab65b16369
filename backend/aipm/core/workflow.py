"""Fixed nine-step planning workflow tables."""
from typing import Dict, List, Tuple

from aipm.core.enums import ProjectRole

WORKFLOW_STEPS: Tuple[int, ...] = tuple(range(1, 10))

STEP_NAMES: Dict[int, str] = {
    1: "Service Overview & Goals",
    2: "Target User Analysis",
    3: "Core Feature Definition",
    4: "User Experience Design",
    5: "Tech Stack & Architecture",
    6: "Development Schedule & Milestones",
    7: "Risk Analysis & Mitigation",
    8: "Success Metrics & Measurement",
    9: "Launch & Monetization Plan",
}

# Prompt guidance for the assistant at each step
STEP_GUIDANCE: Dict[int, str] = {
    1: "Define the product concept: mission, target users, problem, value proposition, differentiation, next steps.",
    2: "Define core features and user journeys. Prioritize MVP vs later scope.",
    3: "Define the technical approach: architecture, data model, integrations, risks.",
    4: "Define the development plan: milestones, scope, resources, risks.",
    5: "Define QA strategy: test plan, cases, automation, acceptance criteria.",
    6: "Define release plan: environments, CI/CD, observability.",
    7: "Define operations plan: monitoring, incident response, support.",
    8: "Define marketing plan: positioning, channels, launch plan, metrics.",
    9: "Define business plan: pricing, revenue model, go-to-market, KPIs.",
}

DOCUMENT_SECTIONS: Dict[int, List[str]] = {
    1: ["Overview", "Target users", "Problem", "Value proposition", "Key features", "Risks", "Next steps"],
    2: ["User journeys", "Feature list", "MVP scope", "Out of scope", "Dependencies"],
    3: ["Architecture", "Data model", "Integrations", "Security", "Risks"],
    4: ["Milestones", "Timeline", "Resources", "Risks", "Delivery plan"],
    5: ["Test scope", "Test cases", "Automation", "Acceptance criteria"],
    6: ["Environments", "Release steps", "CI/CD", "Monitoring"],
    7: ["Operational checklist", "Alerts", "Support flows", "SLOs"],
    8: ["Positioning", "Channels", "Launch plan", "Metrics"],
    9: ["Pricing", "Revenue model", "Go-to-market", "KPIs"],
}

# Project roles allowed to approve documents of each step
APPROVAL_MATRIX: Dict[int, Tuple[ProjectRole, ...]] = {
    1: (ProjectRole.SERVICE_PLANNING,),
    2: (ProjectRole.SERVICE_PLANNING,),
    3: (ProjectRole.SERVICE_PLANNING,),
    4: (ProjectRole.UX_PLANNING,),
    5: (ProjectRole.DEVELOPER,),
    6: (ProjectRole.SERVICE_PLANNING,),
    7: (ProjectRole.SERVICE_PLANNING,),
    8: (ProjectRole.SERVICE_PLANNING,),
    9: (ProjectRole.CONTENT_PLANNING, ProjectRole.SERVICE_PLANNING),
}


def is_valid_step(step) -> bool:
    return isinstance(step, int) and not isinstance(step, bool) and step in WORKFLOW_STEPS


def step_name(step: int) -> str:
    return STEP_NAMES[step]


def approver_roles_for_step(step: int) -> Tuple[ProjectRole, ...]:
    return APPROVAL_MATRIX.get(step, ())
