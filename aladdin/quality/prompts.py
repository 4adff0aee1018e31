from __future__ import annotations

import json
from typing import Any, Mapping

from ..schemas.quality import AssessmentLevel, QualityAssessment
from .thresholds import DEFAULT_POLICY, ThresholdPolicy
from .weights import active_dimensions

_DIMENSION_RUBRICS: Mapping[str, tuple[str, tuple[str, ...]]] = {
    "confidence": (
        "How well-crafted and professional is the output?",
        (
            "Grammar, spelling and clarity",
            "Structure and organisation",
            "Attention to detail and polish",
        ),
    ),
    "completeness": (
        "How thorough and complete is the output?",
        (
            "Every requested element is present",
            "Sufficient detail and depth",
            "No major gaps or missing information",
        ),
    ),
    "relevance": (
        "How well does the output address the task?",
        (
            "Directly answers the request",
            "Stays focused on the topic",
            "Meets the expected outcome",
        ),
    ),
    "consistency": (
        "How consistent is the output with existing project data?",
        (
            "Matches established facts and lore",
            "Consistent with character traits and motivations",
            "No contradictions with existing content",
        ),
    ),
    "creativity": (
        "How creative and engaging is the output for the {department} department?",
        (
            "Original ideas and approaches",
            "Compelling narrative or character development",
            "Emotional resonance",
        ),
    ),
    "technical": (
        "How technically sound is the output for the {department} department?",
        (
            "Follows technical standards",
            "Feasible and production-ready",
            "Accurate specifications",
        ),
    ),
}

_RESPONSE_FIELDS: Mapping[str, str] = {
    "confidence": "qualityScore",
    "relevance": "relevanceScore",
    "consistency": "consistencyScore",
    "completeness": "completenessScore",
    "creativity": "creativityScore",
    "technical": "technicalScore",
}

_RESPONSE_ORDER = ("confidence", "relevance", "consistency", "completeness", "creativity", "technical")


def _fenced(body: str, language: str = "") -> str:
    return f"```{language}\n{body}\n```"


def _dimension_section(index: int, dimension: str, department: str) -> str:
    question, criteria = _DIMENSION_RUBRICS[dimension]
    lines = [f"### {index}. {dimension.upper()} (0-100)", question.format(department=department)]
    lines.extend(f"- {criterion}" for criterion in criteria)
    return "\n".join(lines)


def _decision_guidelines(policy: ThresholdPolicy, level: AssessmentLevel) -> list[str]:
    thresholds = policy.thresholds(level)
    return [
        f"  - REJECT: < {thresholds.minimum:g} (critical issues)",
        f"  - RETRY: {thresholds.minimum:g}-{thresholds.acceptable - 1:g} (needs improvement)",
        f"  - ACCEPT: {thresholds.acceptable:g}-{thresholds.good - 1:g} (meets standards)",
        f"  - EXEMPLARY: {thresholds.good:g}-100 (exceptional quality)",
    ]


def build_assessment_prompt(
    content: str,
    department_id: str,
    *,
    task: str | None = None,
    expected_outcome: str | None = None,
    project_context: Mapping[str, Any] | None = None,
    level: AssessmentLevel = AssessmentLevel.SPECIALIST,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> str:
    """Full rubric prompt naming exactly the dimensions graded for the department."""
    department = department_id.lower()
    dimensions = active_dimensions(department)

    sections = [
        f"You are a quality assessment expert for the {department} department of a movie production system.",
        "Evaluate the following output on multiple quality dimensions.",
        "## Quality Dimensions",
        "\n\n".join(
            _dimension_section(index, dimension, department)
            for index, dimension in enumerate(dimensions, start=1)
        ),
        "## Task Context",
        f"**Task Given:**\n{task or 'No specific task provided'}",
        f"**Expected Outcome:**\n{expected_outcome or 'General quality output expected'}",
        f"**Department:**\n{department}",
        "## Output to Evaluate",
        _fenced(content),
    ]
    if project_context:
        sections.append("## Existing Project Context")
        sections.append(_fenced(json.dumps(project_context, indent=2, sort_keys=True, default=str), "json"))

    schema_lines = [
        f'  "{_RESPONSE_FIELDS[dimension]}": <number 0-100>,'
        for dimension in _RESPONSE_ORDER
        if dimension in dimensions
    ]
    schema_lines.extend(
        [
            '  "overallScore": <number 0-100>,',
            '  "confidence": <number 0.0-1.0>,',
            '  "issues": ["issue1", "issue2"],',
            '  "suggestions": ["suggestion1", "suggestion2"],',
            '  "decision": "<REJECT|RETRY|ACCEPT|EXEMPLARY>",',
            '  "reasoning": "Clear explanation of the assessment and decision"',
        ]
    )
    sections.append("## Your Assessment")
    sections.append(
        "Provide your assessment as a JSON object with this exact structure:\n"
        + _fenced("{\n" + "\n".join(schema_lines) + "\n}", "json")
    )
    guidelines = [
        "**Important Guidelines:**",
        "- Be objective and constructive",
        "- Use the full 0-100 scale; do not cluster around 70-80",
        "- Base the decision on the score thresholds:",
        *_decision_guidelines(policy, level),
        "- Set confidence to how certain you are of the assessment (0.0-1.0)",
        "- Give specific, actionable issues and suggestions",
    ]
    sections.append("\n".join(guidelines))
    sections.append("Return ONLY the JSON object, no additional text.")
    return "\n\n".join(sections)


def build_quick_assessment_prompt(
    content: str,
    department_id: str,
    *,
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> str:
    department = department_id.lower()
    schema = (
        "{\n"
        '  "overallScore": <number 0-100>,\n'
        '  "decision": "<REJECT|RETRY|ACCEPT|EXEMPLARY>",\n'
        '  "reasoning": "Brief 1-sentence explanation"\n'
        "}"
    )
    return "\n\n".join(
        [
            f"Quickly assess this {department} department output on a scale of 0-100:",
            _fenced(content),
            "Return a JSON object with just the overall score and decision:",
            _fenced(schema, "json"),
            "Use these thresholds:\n" + "\n".join(line.strip() for line in _decision_guidelines(policy, AssessmentLevel.SPECIALIST)),
            "Return ONLY the JSON object.",
        ]
    )


def build_consistency_prompt(content: str, existing_context: Mapping[str, Any], department_id: str) -> str:
    schema = (
        "{\n"
        '  "consistencyScore": <number 0-100>,\n'
        '  "inconsistencies": ["inconsistency1", "inconsistency2"],\n'
        '  "reasoning": "Explanation of consistency assessment"\n'
        "}"
    )
    return "\n\n".join(
        [
            f"Check whether this {department_id.lower()} output is consistent with existing project data.",
            "**New Output:**\n" + _fenced(content),
            "**Existing Project Context:**\n"
            + _fenced(json.dumps(dict(existing_context), indent=2, sort_keys=True, default=str), "json"),
            "Evaluate consistency and list every contradiction or inconsistency.",
            "Return JSON:\n" + _fenced(schema, "json"),
            "Return ONLY the JSON object.",
        ]
    )


def build_specialist_prompt(
    task: str,
    *,
    department_id: str,
    specialist: str,
    upstream: Mapping[str, Mapping[str, str]] | None = None,
    project_context: Mapping[str, Any] | None = None,
) -> str:
    sections = [f"Department: {department_id}", f"Specialist: {specialist}", f"Task:\n{task}"]
    if project_context:
        sections.append(
            "Project context:\n" + _fenced(json.dumps(dict(project_context), indent=2, sort_keys=True, default=str), "json")
        )
    for department, outputs in (upstream or {}).items():
        for name, output in outputs.items():
            sections.append(f"Approved {department} output from {name}:\n{output}")
    return "\n\n".join(sections)


def build_revision_prompt(
    task: str,
    previous_output: str,
    assessment: QualityAssessment,
    *,
    attempt: int,
) -> str:
    """Feedback prompt for a specialist whose output came back as RETRY."""
    lines = [
        task,
        "",
        f"Your previous attempt (revision {attempt}) scored {assessment.overall_score:.0f}/100 "
        f"and needs revision ({assessment.decision.value}).",
        "",
        "Previous output:",
        _fenced(previous_output),
    ]
    if assessment.issues:
        lines.append("")
        lines.append("Issues to fix:")
        lines.extend(f"- {issue}" for issue in assessment.issues)
    if assessment.suggestions:
        lines.append("")
        lines.append("Suggestions:")
        lines.extend(f"- {suggestion}" for suggestion in assessment.suggestions)
    lines.append("")
    lines.append("Produce a complete revised output that addresses every issue.")
    return "\n".join(lines)
