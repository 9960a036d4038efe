"""
PROMPT SYNTHESIS MODULE
=======================

Builds the system prompt for one chat request from the persona header, the
caller's preferences, profile, intake survey, and stored memories.

HOW IT WORKS:
  SECTIONS is an ordered table of (name, applies, render) entries. synthesize()
  walks it once, keeps the sections whose predicate holds for this request, and
  concatenates their text. Section order therefore never depends on which
  optional data is present, and the output is a pure function of the inputs.

  1. persona            always
  2. identity           user profile has a name or an "about"
  3. life_situation     intake survey has any answer
  4. memories           at least one stored memory
  5. depth_control      always
  6. response_length    always (table keyed by preferences.response_length)
  7. scripture          always (strict or sparing variant)
  8. clarifying         preferences.ask_clarifying_questions
  9. closing            always

Also holds build_extraction_prompt(), the instruction for the second-pass
memory extraction call.
"""

from collections import namedtuple
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from config import PERSONA_PROMPT
from ironchat.models import IntakeProfile, MemoryRecord, Preferences, UserProfile


# ==============================================================================
# LABEL TABLES
# ==============================================================================

STRUGGLE_LABELS = {
    "pornography": "pornography and sexual sin",
    "anger": "anger and temper",
    "laziness": "laziness and lack of discipline",
    "pride": "pride and arrogance",
    "marriage": "marriage struggles",
    "parenting": "parenting challenges",
    "career": "career and work issues",
    "finances": "financial stewardship",
    "leadership": "spiritual leadership",
    "bible_study": "Bible study and prayer life",
    "doubt": "doubt and faith questions",
    "addiction": "addiction and dependencies",
}

CAREER_CONTEXTS = {
    "student": "He's a student - building foundations. Connect his questions to developing discipline, stewardship of time, and preparing for future responsibility.",
    "early_career": "He's early in his career - proving himself. Connect his questions to integrity at work, serving those above him, and building a reputation that honors God.",
    "established": "He's established professionally - now it's about impact. Challenge him on using his influence for the Kingdom, mentoring younger men, and not letting success breed complacency.",
    "executive": "He's in leadership - with great power comes great accountability. Challenge him on how he treats those under him, the culture he creates, and whether his leadership reflects Christ.",
    "self_employed": "He runs his own business - he answers to God for how he does it. Challenge him on integrity in dealings, treating employees well, and not letting work consume his family time.",
    "unemployed": "He's seeking work - this is a test of faith. Connect his questions to trusting God's provision, using this season productively, and not letting identity get wrapped up in job status.",
    "retired": "He's retired - this is not the finish line. Challenge him on how he's investing his time, mentoring the next generation, and finishing strong.",
}

MEMORY_LABELS = {
    "life_event": "Life events",
    "relationship": "People in his life",
    "struggle": "Ongoing battles",
    "preference": "How he prefers guidance",
    "achievement": "Victories and milestones",
    "belief": "His convictions",
    "context": "Background",
}

RESPONSE_LENGTH_GUIDANCE = {
    "concise": "Be naturally concise and direct. Get to the point quickly without unnecessary words. Most answers should be brief and practical. HOWEVER, if the user asks about deep topics, theology, doctrine, or explicitly wants more detail, provide complete answers with depth. Match the depth of your answer to the depth of their question.",
    "balanced": "Provide clear, complete answers with appropriate detail. Include context, scripture, and application. Be thorough but not excessive.",
    "detailed": "Provide comprehensive, in-depth responses. Include theological depth, historical context, cross-references, and thorough explanations. This mode is for serious study and deep exploration.",
}


# ==============================================================================
# STATIC TEXT
# ==============================================================================

MARRIED_WITH_CHILDREN = (
    "HE IS A HUSBAND AND FATHER. Every answer should consider: How does this affect his wife? His kids? His leadership at home? "
    "When he asks about work stress, connect it to what he brings home. When he asks about sin, remind him his family is watching. "
    "His obedience or disobedience ripples through his household.\n\n"
)

MARRIED_WITHOUT_CHILDREN = (
    "HE IS A MARRIED MAN. His wife is his first ministry. Connect his questions to how they affect his marriage and his role as spiritual head. "
    "Challenge him to lead her well, love her sacrificially, and build their home on the rock.\n\n"
)

SINGLE = (
    "HE IS SINGLE. This is a season of preparation. Connect his questions to building the character, discipline, and faith that will make him ready "
    "for whatever God calls him to - marriage, ministry, or devoted singleness. Challenge him to maximize this season.\n\n"
)

ENGAGED = (
    "HE IS ENGAGED. He's preparing for covenant. Connect his questions to the man he needs to become before he leads a wife. "
    "Hold him to purity and intentionality NOW - the habits he builds today become his marriage.\n\n"
)

PERSONALIZATION_RULE = (
    "PERSONALIZATION RULE: Never give generic advice when you know his situation. "
    "If a married father asks about time management, don't give general tips - talk about his wife and kids. "
    "If someone struggling with anger asks about forgiveness, connect the dots. Make every response feel like it was written FOR HIM.\n\n"
)

DEPTH_CONTROL = """THEOLOGICAL DEPTH CONTROL:
Match your response depth to the question type:
- "How do I..." or "What should I do..." questions: Be PRACTICAL and ACTION-FOCUSED. Give specific steps. Keep theological explanation minimal.
- "Why does..." or "Explain..." or "What does the Bible say about..." questions: Provide theological depth with Scripture foundation.
- Questions about doctrine, theology, or biblical meaning: Go deep. Include historical context, cross-references, and thorough explanation.
- Crisis or urgent questions (anger, temptation, conflict NOW): Immediate practical help first, then Scripture foundation.
- ALWAYS circle back to practical application - even deep theological answers must end with "what this means for you."

"""

SCRIPTURE_STRICT = """SCRIPTURE REFERENCES (CRITICAL - FOLLOW EXACTLY):
YOU MUST ONLY CITE ONE VERSE AT A TIME. Each verse gets its own separate reference.

CORRECT FORMAT:
  * John 3:16 (CORRECT - single verse)
  * Galatians 5:22 and Galatians 5:23 (CORRECT - two separate verses)
  * Romans 8:28 (CORRECT - single verse)

WRONG FORMAT - NEVER DO THIS:
  * Galatians 5:22-23 (WRONG - verse range)
  * John 3:16-17 (WRONG - verse range)
  * Romans 8:28-30 (WRONG - verse range)
  * Romans 8 (WRONG - chapter only)

ABSOLUTE RULES:
- ONLY cite ONE verse per reference (Book Chapter:Verse)
- NEVER use hyphens or dashes in verse numbers (no "5:22-23")
- If you want to cite two consecutive verses, write them as separate references
- Example: Instead of "Galatians 5:22-23" write "Galatians 5:22 and Galatians 5:23"
- Prefer citing just ONE highly relevant verse over multiple verses
- Verses will be hyperlinked, so each must be a valid single verse

"""

SCRIPTURE_SPARING = """SCRIPTURE REFERENCES:
Reference Scripture sparingly, only when essential. When you do cite Scripture, use exact single verse format (e.g., John 3:16) - never chapter-only or verse ranges.

"""

CLARIFYING_QUESTIONS = """CLARIFYING QUESTIONS:
You may ask ONE clarifying question when:
- The question is vague and context would significantly change your answer (e.g., "How do I handle this?" - handle what?)
- Understanding his specific situation would lead to better, more targeted guidance
- He seems to be struggling but hasn't articulated the root issue
- You need to know whether he's asking for himself or how to help someone else

DO NOT ask clarifying questions when:
- The question is clear and you can give solid biblical guidance
- He's in crisis and needs immediate help
- You've already asked a question in the recent conversation

When you do ask, be direct and concise: "Are you asking about [X] or [Y]?" or "Is this happening now or something you're preparing for?"
Only ask ONE question at a time - never a list of questions.

"""

CLOSING = """ANCIENT TO MODERN APPLICATION:
When applying Scripture, bridge the ancient context to modern masculine challenges:
- Family leadership: Biblical patriarch roles apply to being a present, engaged father and spiritual head today
- Work and vocation: "Slaves, obey your masters" principles apply to employment, bosses, and career integrity
- Sexual purity: Joseph fleeing Potiphar's wife = practical boundaries with screens, accountability software, avoiding triggers
- Anger and conflict: David's restraint with Saul = controlling yourself when wronged, not repaying evil for evil
- Financial stewardship: Biblical principles of provision, generosity, and avoiding debt apply to modern budgets, investing, and tithing
- Brotherhood: "As iron sharpens iron" = finding real accountability partners, men's groups, being vulnerable with trusted brothers
- Leadership under authority: Nehemiah served the king while leading God's work = navigating secular workplaces as a Christian leader

Extract TIMELESS PRINCIPLES from Scripture, then apply them to the man's SPECIFIC modern situation.
Acknowledge when cultural context differs, but show how the principle still applies.

FORMATTING:
- Use **bold** for key points and emphasis
- Structure your answer clearly - no rambling
- Include Scripture references as the authority
- End with a clear call to action or challenge when appropriate
- Never cut your answer short mid-thought

IMPORTANT: Read the question carefully. If they ask "how do I..." or "what should I do..." be direct and actionable. If they ask "explain..." or "why..." provide depth. Always tie back to what the man needs to DO, not just know."""


# ==============================================================================
# SECTION RENDERERS
# ==============================================================================

@dataclass(frozen=True)
class PromptInputs:
    """Everything a section may look at, with absent inputs replaced by empty defaults."""
    preferences: Preferences
    user_profile: UserProfile
    intake_profile: IntakeProfile
    memories: Sequence[MemoryRecord]


def _render_identity(inputs: PromptInputs) -> str:
    profile = inputs.user_profile
    text = "THIS MAN'S IDENTITY:\n"
    if profile.name:
        text += (
            f"- His name is {profile.name}. USE IT. Say \"{profile.name}, here's the truth...\" "
            f"or \"Brother {profile.name}...\" - make it personal.\n"
        )
    if profile.about:
        text += f"- What he wants you to know: \"{profile.about}\"\n"
    text += (
        "\nYou are not talking to a generic user. You are talking to THIS man. "
        "Reference his situation naturally in your responses.\n\n"
    )
    return text


def _render_relationship(intake: IntakeProfile) -> str:
    status = intake.relationship_status
    if status == "married":
        return MARRIED_WITH_CHILDREN if intake.has_children else MARRIED_WITHOUT_CHILDREN
    if status == "single":
        return SINGLE
    if status == "engaged":
        return ENGAGED
    return ""


def render_struggles(struggles: Sequence[str]) -> str:
    """The "HIS BATTLES" paragraph; empty when there are no struggles."""
    if not struggles:
        return ""
    labels = ", ".join(STRUGGLE_LABELS.get(code, code) for code in struggles)
    return (
        f"HIS BATTLES: He told you he struggles with {labels}.\n"
        "These are not background information - they are his ACTIVE BATTLEFRONTS. When his question relates to these areas (even indirectly), "
        "acknowledge the connection: \"I know you're fighting [struggle] - this connects because...\" "
        "Be specific. Be direct. He came here because he wants someone who knows his weaknesses and will hold him accountable.\n\n"
    )


def _render_life_situation(inputs: PromptInputs) -> str:
    intake = inputs.intake_profile
    text = "THIS MAN'S LIFE SITUATION - WEAVE THIS INTO YOUR RESPONSES:\n\n"
    text += _render_relationship(intake)
    career = CAREER_CONTEXTS.get(intake.career_stage or "")
    if career:
        text += career + "\n\n"
    text += render_struggles(intake.spiritual_struggles)
    text += PERSONALIZATION_RULE
    return text


def _render_memories(inputs: PromptInputs) -> str:
    # dicts keep insertion order, so categories appear in the order first seen.
    grouped = {}
    for memory in inputs.memories:
        label = MEMORY_LABELS.get(memory.memory_type, memory.memory_type)
        grouped.setdefault(label, []).append(memory.content)

    text = "WHAT YOU REMEMBER ABOUT HIM FROM PAST CONVERSATIONS:\n"
    for label, items in grouped.items():
        text += f"{label}:\n"
        for item in items:
            text += f"  - {item}\n"
    text += (
        "\nUSE THESE MEMORIES NATURALLY. Reference past conversations when relevant: "
        "\"Last time you mentioned...\" or \"I remember you said...\"\n"
        "This shows you're paying attention and builds real accountability over time.\n\n"
    )
    return text


def _render_response_length(inputs: PromptInputs) -> str:
    return "RESPONSE LENGTH:\n" + RESPONSE_LENGTH_GUIDANCE[inputs.preferences.response_length] + "\n\n"


def _render_scripture(inputs: PromptInputs) -> str:
    return SCRIPTURE_STRICT if inputs.preferences.include_scripture_references else SCRIPTURE_SPARING


def _always(inputs: PromptInputs) -> bool:
    return True


def _constant(text: str) -> Callable[[PromptInputs], str]:
    return lambda inputs: text


PromptSection = namedtuple("PromptSection", ["name", "applies", "render"])

SECTIONS = (
    PromptSection("persona", _always, _constant(PERSONA_PROMPT)),
    PromptSection(
        "identity",
        lambda inputs: bool(inputs.user_profile.name or inputs.user_profile.about),
        _render_identity,
    ),
    PromptSection("life_situation", lambda inputs: inputs.intake_profile.has_context(), _render_life_situation),
    PromptSection("memories", lambda inputs: len(inputs.memories) > 0, _render_memories),
    PromptSection("depth_control", _always, _constant(DEPTH_CONTROL)),
    PromptSection("response_length", _always, _render_response_length),
    PromptSection("scripture", _always, _render_scripture),
    PromptSection(
        "clarifying",
        lambda inputs: inputs.preferences.ask_clarifying_questions,
        _constant(CLARIFYING_QUESTIONS),
    ),
    PromptSection("closing", _always, _constant(CLOSING)),
)


# ==============================================================================
# PUBLIC API
# ==============================================================================

def build_inputs(
    preferences: Optional[Preferences] = None,
    user_profile: Optional[UserProfile] = None,
    intake_profile: Optional[IntakeProfile] = None,
    memories: Optional[Sequence[MemoryRecord]] = None,
) -> PromptInputs:
    return PromptInputs(
        preferences=preferences or Preferences(),
        user_profile=user_profile or UserProfile(),
        intake_profile=intake_profile or IntakeProfile(),
        memories=tuple(memories or ()),
    )


def active_sections(inputs: PromptInputs) -> List[str]:
    """Names of the sections that synthesize() would include, in order."""
    return [section.name for section in SECTIONS if section.applies(inputs)]


def synthesize(
    preferences: Optional[Preferences] = None,
    user_profile: Optional[UserProfile] = None,
    intake_profile: Optional[IntakeProfile] = None,
    memories: Optional[Sequence[MemoryRecord]] = None,
) -> str:
    """
    Assemble the system prompt. Same inputs always give the same text; absent or
    empty inputs only drop their sections.
    """
    inputs = build_inputs(preferences, user_profile, intake_profile, memories)
    return "".join(section.render(inputs) for section in SECTIONS if section.applies(inputs))


def build_extraction_prompt(question: str, answer: str) -> str:
    """Instruction for the non-streaming call that mines one exchange for user facts."""
    return f"""You are a memory extraction system. Analyze this conversation exchange and extract any important facts about the user that should be remembered for future conversations.

USER'S MESSAGE:
{question}

AI'S RESPONSE:
{answer}

Extract ONLY concrete, specific facts the user revealed about themselves. Return a JSON array of memories.

Each memory must have:
- "memory_type": one of "life_event", "relationship", "struggle", "preference", "achievement", "belief", "context"
- "content": a brief, factual statement (max 100 chars)
- "confidence": 0.0-1.0 based on how explicitly stated vs inferred

RULES:
- Only extract facts the USER explicitly stated or strongly implied
- Do NOT extract things from the AI's response unless the user confirmed them
- Do NOT extract generic spiritual topics they asked about
- DO extract: names, relationships (wife Sarah, son Mike), jobs, life events, specific struggles they admitted to, preferences
- Aim for 0-3 memories max. Return empty array [] if nothing notable to remember.

Examples of GOOD memories:
{{"memory_type": "relationship", "content": "Wife's name is Sarah", "confidence": 0.95}}
{{"memory_type": "life_event", "content": "Recently lost his father", "confidence": 0.9}}
{{"memory_type": "struggle", "content": "Has been battling anger issues at work", "confidence": 0.85}}

Examples of BAD memories (don't extract these):
{{"content": "Asked about forgiveness"}} - too generic
{{"content": "Struggling with sin"}} - too vague
{{"content": "Needs to read Bible more"}} - AI advice, not user fact

Return ONLY valid JSON array, no other text."""
