"""
Versioned prompt templates for the reasoning engine.

Each registry version pins one instruction template per operation: the six
pipeline stages, ``rewrite`` and the single-shot ``analyze``. Templates use
``{{placeholder}}`` markers that the prompt builder substitutes:

- ``{{qualityRules}}``: the INVEST rule list
- ``{{vocabulary}}``: preferred terms and terms to avoid
- ``{{fewShotExamples}}``: worked examples for the operation
- ``{{previousResults}}``: JSON of all earlier stage results in this run
- ``{{relevantFindings}}``: findings the human marked relevant

A run always uses a single version so results stay reproducible.
"""

import json

from .models import PIPELINE_STAGES

# INVEST quality rules; each maps onto the finding category it usually produces
QUALITY_RULES = [
    {
        "id": "invest_independent",
        "name": "Independent",
        "category": "too_broad_scope",
        "criteria": "The story can be implemented on its own without depending on other stories.",
    },
    {
        "id": "invest_negotiable",
        "name": "Negotiable",
        "category": "solution_bias",
        "criteria": "The story describes the desired outcome, not implementation details, and leaves room for discussion.",
    },
    {
        "id": "invest_valuable",
        "name": "Valuable",
        "category": "business_value_gap",
        "criteria": "The story delivers clear value to the end user or the business.",
    },
    {
        "id": "invest_estimable",
        "name": "Estimable",
        "category": "ambiguity",
        "criteria": "The story holds enough information to estimate the effort.",
    },
    {
        "id": "invest_small",
        "name": "Small",
        "category": "too_broad_scope",
        "criteria": "The story is small enough to be completed within one sprint.",
    },
    {
        "id": "invest_testable",
        "name": "Testable",
        "category": "not_testable",
        "criteria": "Clear acceptance criteria can be written for the story.",
    },
]

VOCABULARY = [
    {
        "term": "Benutzer",
        "definition": "The person actively using the system",
        "synonyms": ["User", "Anwender", "Nutzer"],
        "avoid": ["jemand", "man"],
    },
    {
        "term": "Admin",
        "definition": "Administrator with extended permissions",
        "synonyms": ["Administrator", "Systemverwalter"],
    },
    {
        "term": "möchte ich",
        "definition": "Introduces the desired goal or feature",
        "avoid": ["brauche", "muss haben", "soll können"],
    },
    {
        "term": "damit",
        "definition": "Introduces the business value or benefit",
        "synonyms": ["um zu", "sodass"],
        "avoid": ["weil", "denn"],
    },
]

FEW_SHOT_EXAMPLES = {
    "analysis": [
        {
            "input": "Als Benutzer möchte ich Daten schnell laden können.",
            "output": {
                "issues": [{
                    "category": "ambiguity",
                    "severity": "major",
                    "textReference": "schnell laden",
                    "reasoning": "\"Schnell\" is not measurable. Under one second? Under five?",
                    "clarificationQuestion": "Which concrete load times are acceptable?",
                }],
            },
        },
        {
            "input": "Als Admin möchte ich User löschen können.",
            "output": {
                "issues": [{
                    "category": "missing_benefit",
                    "severity": "major",
                    "textReference": "User löschen können",
                    "reasoning": "The benefit of this function is not stated.",
                    "clarificationQuestion": "Which problem does deleting users solve?",
                }],
            },
        },
    ],
    "rewrite": [
        {
            "input": "Als Benutzer möchte ich Daten schnell laden können.",
            "output": {
                "candidates": [{
                    "text": "Als Benutzer möchte ich, dass die Datenliste innerhalb von 2 Sekunden geladen wird, damit ich effizient arbeiten kann.",
                    "explanation": "The vague \"schnell\" was replaced by a measurable time limit.",
                    "changes": [{"type": "modified", "description": "\"schnell\" -> \"innerhalb von 2 Sekunden\""}],
                    "openQuestions": ["Is 2 seconds the intended target?"],
                }],
            },
        },
    ],
    "criteria": [
        {
            "input": "Als Benutzer möchte ich mein Passwort zurücksetzen, damit ich wieder Zugriff erhalte.",
            "output": {
                "criteria": [{
                    "title": "Reset link is sent",
                    "given": "a registered user on the login page",
                    "when": "they request a password reset",
                    "then": "a reset link is sent to their e-mail address",
                    "type": "happy_path",
                    "priority": "must",
                }],
            },
        },
    ],
}

# Which example set each operation shows the engine
EXAMPLE_SETS = {
    "ambiguity_analysis": "analysis",
    "structure_check": "analysis",
    "quality_check": "analysis",
    "business_value": "analysis",
    "solution_bias": "analysis",
    "analyze": "analysis",
    "rewrite": "rewrite",
    "acceptance_criteria": "criteria",
}

_COMMON_RULES = """IMPORTANT RULES:
1. Analyse ONLY the given text. Do NOT invent new domain information.
2. Mark uncertainty explicitly with "[UNSURE]".
3. Quote the exact passage each issue refers to.
4. When context is missing, ask a clarification question.
5. Respond ONLY with valid JSON."""

PROMPT_V1_AMBIGUITY = """You are a user story quality expert. Analyse the story for AMBIGUITY and VAGUENESS.

INVEST criterion: Estimable
- Are all terms clearly defined?
- Are there words open to more than one interpretation?
- Are quantities or time spans left unquantified?

QUALITY RULES:
{{qualityRules}}

VOCABULARY:
{{vocabulary}}

EXAMPLES:
{{fewShotExamples}}

""" + _COMMON_RULES + """

OUTPUT FORMAT (JSON):
{
  "stage": "ambiguity_analysis",
  "issues": [
    {
      "id": "amb_1",
      "category": "ambiguity|vague_language",
      "severity": "critical|major|minor|info",
      "textReference": "exact quote from the text",
      "reasoning": "why it is ambiguous",
      "clarificationQuestion": "question that would resolve it",
      "confidence": "high|medium|low"
    }
  ],
  "summary": "summary of the ambiguity analysis"
}"""

PROMPT_V1_STRUCTURE = """You are a user story structure expert. Check the story for STRUCTURAL COMPLETENESS.

INVEST criteria: Independent, Valuable
- Does the story name a clear role or persona?
- Is the goal understandable?
- Is the benefit (business value) stated?
- Are there implicit dependencies?

QUALITY RULES:
{{qualityRules}}

PREVIOUS RESULTS:
{{previousResults}}

""" + _COMMON_RULES + """

Check for the shape "As a [role] I want [goal] so that [benefit]" (German: "Als [Rolle] möchte ich [Ziel], damit [Nutzen]").

OUTPUT FORMAT (JSON):
{
  "stage": "structure_check",
  "structuredModel": {
    "role": "detected role or null",
    "goal": "detected goal or null",
    "benefit": "detected benefit or null",
    "constraints": ["detected constraints"],
    "parseConfidence": "high|medium|low"
  },
  "issues": [
    {
      "id": "struct_1",
      "category": "missing_role|missing_goal|missing_benefit|persona_unclear",
      "severity": "critical|major|minor|info",
      "affectedSection": "role|goal|benefit|constraint",
      "textReference": "affected passage",
      "reasoning": "why the element is missing",
      "clarificationQuestion": "question",
      "confidence": "high|medium|low"
    }
  ],
  "summary": "structure summary"
}"""

PROMPT_V1_QUALITY = """You are a quality assurance expert for user stories. Check for QUALITY PROBLEMS.

INVEST criteria: Small, Testable, Negotiable
- Is the story small enough for one sprint?
- Can the story be tested?
- Does it prescribe a solution instead of describing a problem?

QUALITY RULES (INVEST):
{{qualityRules}}

PREVIOUS RESULTS:
{{previousResults}}

""" + _COMMON_RULES + """

OUTPUT FORMAT (JSON):
{
  "stage": "quality_check",
  "issues": [
    {
      "id": "qual_1",
      "category": "too_broad_scope|not_testable|solution_bias|inconsistency|other",
      "severity": "critical|major|minor|info",
      "textReference": "affected passage",
      "reasoning": "why this is a problem",
      "suggestedAction": "proposed correction",
      "clarificationQuestion": "question when unsure",
      "investCriterion": "I|N|V|E|S|T",
      "confidence": "high|medium|low"
    }
  ],
  "overallScore": 0,
  "summary": "quality summary"
}
overallScore is an integer from 0 to 100."""

PROMPT_V1_BUSINESS_VALUE = """You are a business analyst. Check the story for BUSINESS VALUE and how the benefit is phrased.

INVEST criterion: Valuable
- Is the business value clearly recognisable?
- Does the end user or the company benefit?
- Is the benefit measurable or at least describable?

PREVIOUS RESULTS:
{{previousResults}}

""" + _COMMON_RULES + """

OUTPUT FORMAT (JSON):
{
  "stage": "business_value",
  "issues": [
    {
      "id": "bv_1",
      "category": "business_value_gap",
      "severity": "critical|major|minor|info",
      "textReference": "affected benefit phrase",
      "reasoning": "why the value is unclear",
      "suggestedBenefit": "better phrasing",
      "clarificationQuestion": "question about the business value",
      "confidence": "high|medium|low"
    }
  ],
  "valueAssessment": {
    "hasValue": true,
    "valueType": "user|business|technical",
    "clarity": "high|medium|low"
  },
  "summary": "business value assessment"
}"""

PROMPT_V1_SOLUTION_BIAS = """You are a requirements engineer. Check the story for SOLUTION BIAS.

INVEST criterion: Negotiable
- Does the story describe a problem or a solution?
- Are implementation details prescribed?
- Is there room for alternative implementations?

PREVIOUS RESULTS:
{{previousResults}}

""" + _COMMON_RULES + """

Distinguish WHAT (allowed) from HOW (problematic) and propose neutral phrasing.

OUTPUT FORMAT (JSON):
{
  "stage": "solution_bias",
  "issues": [
    {
      "id": "sb_1",
      "category": "solution_bias|technical_debt",
      "severity": "critical|major|minor|info",
      "textReference": "technical or solution prescription",
      "reasoning": "why this is solution bias",
      "alternativeFormulation": "neutral problem statement",
      "confidence": "high|medium|low"
    }
  ],
  "hasSolutionBias": true,
  "summary": "solution bias assessment"
}"""

PROMPT_V1_ACCEPTANCE_CRITERIA = """You are an expert for acceptance criteria. Generate testable criteria in Given-When-Then format.

INVEST criterion: Testable
- Every criterion must be concretely testable
- Cover the main flow, error cases and edge cases
- Base everything ONLY on the given story

EXAMPLES:
{{fewShotExamples}}

PREVIOUS RESULTS:
{{previousResults}}

FINDINGS TO CONSIDER:
{{relevantFindings}}

IMPORTANT RULES:
1. Derive criteria ONLY from the story.
2. Do NOT invent new business rules.
3. Mark assumptions with "[ASSUMPTION]".
4. Respond ONLY with valid JSON.

OUTPUT FORMAT (JSON):
{
  "stage": "acceptance_criteria",
  "criteria": [
    {
      "id": "ac_1",
      "title": "descriptive title",
      "given": "precondition",
      "when": "triggering action",
      "then": "expected result",
      "type": "happy_path|edge_case|error_case|negative_case",
      "priority": "must|should|could",
      "notes": "notes or assumptions",
      "confidence": "high|medium|low"
    }
  ],
  "coverage": {
    "mainFlow": true,
    "errorCases": true,
    "edgeCases": true,
    "negativeCases": true
  },
  "openQuestions": ["questions needed for full coverage"]
}"""

PROMPT_V1_REWRITE = """You are a user story expert. Write improved versions of the story that address the listed findings.

QUALITY RULES:
{{qualityRules}}

VOCABULARY:
{{vocabulary}}

FINDINGS TO ADDRESS:
{{relevantFindings}}

EXAMPLES:
{{fewShotExamples}}

IMPORTANT RULES:
1. Base rewrites ONLY on the given information.
2. Where information is missing, mark it as [PLACEHOLDER: description].
3. Explain every change.
4. Produce 2-3 different variants.
5. Respond ONLY with valid JSON.

OUTPUT FORMAT (JSON):
{
  "candidates": [
    {
      "id": "rw_1",
      "text": "improved story in role/goal/benefit form",
      "explanation": "why this version",
      "addressedIssueIds": ["amb_1", "struct_1"],
      "changes": [
        {"type": "added|removed|modified|clarified", "description": "what changed"}
      ],
      "confidence": "high|medium|low",
      "openQuestions": ["questions still to resolve"]
    }
  ]
}"""

PROMPT_V1_ANALYZE = """You are a user story analyst. Analyse the given user story and identify its problems.

QUALITY RULES:
{{qualityRules}}

Respond ONLY with valid JSON in this format:
{
  "issues": [{"category": "completeness|clarity|testability|scope", "severity": "low|medium|high", "message": "description"}],
  "score": 0,
  "suggestions": ["improvement 1", "improvement 2"]
}
score is an integer from 0 to 100."""

PROMPT_REGISTRIES = {
    "v1": {
        "version": "v1",
        "templates": {
            "ambiguity_analysis": PROMPT_V1_AMBIGUITY,
            "structure_check": PROMPT_V1_STRUCTURE,
            "quality_check": PROMPT_V1_QUALITY,
            "business_value": PROMPT_V1_BUSINESS_VALUE,
            "solution_bias": PROMPT_V1_SOLUTION_BIAS,
            "acceptance_criteria": PROMPT_V1_ACCEPTANCE_CRITERIA,
            "rewrite": PROMPT_V1_REWRITE,
            "analyze": PROMPT_V1_ANALYZE,
        },
        "quality_rules": QUALITY_RULES,
        "vocabulary": VOCABULARY,
        "examples": FEW_SHOT_EXAMPLES,
    },
}

OPERATIONS = PIPELINE_STAGES + ("rewrite", "analyze")


def available_versions():
    """List registered prompt versions."""
    return sorted(PROMPT_REGISTRIES.keys())


def get_registry(version: str) -> dict:
    """
    Look up a prompt registry by version.

    Raises:
        ValueError: If the version is not registered
    """
    registry = PROMPT_REGISTRIES.get(version)
    if registry is None:
        raise ValueError(
            f"Unknown prompt version: {version}. "
            f"Available versions: {', '.join(available_versions())}"
        )
    return registry


def get_template(operation: str, version: str) -> str:
    """Return the instruction template for an operation in a version."""
    templates = get_registry(version)["templates"]
    if operation not in templates:
        raise ValueError(f"Unknown operation: {operation}. Supported operations: {', '.join(OPERATIONS)}")
    return templates[operation]


def format_quality_rules(version: str) -> str:
    return "\n".join(
        f"- {rule['name']}: {rule['criteria']}" for rule in get_registry(version)["quality_rules"]
    )


def format_vocabulary(version: str) -> str:
    lines = []
    for entry in get_registry(version)["vocabulary"]:
        line = f"- {entry['term']}: {entry['definition']}"
        if entry.get("avoid"):
            line += f" (avoid: {', '.join(entry['avoid'])})"
        lines.append(line)
    return "\n".join(lines)


def format_few_shot_examples(operation: str, version: str) -> str:
    examples = get_registry(version)["examples"].get(EXAMPLE_SETS.get(operation, ""), [])
    blocks = []
    for example in examples:
        blocks.append(
            f"Input: \"{example['input']}\"\n"
            f"Output: {json.dumps(example['output'], ensure_ascii=False)}"
        )
    return "\n\n".join(blocks)
