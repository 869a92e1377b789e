"""Rule table for local fact extraction.

Each rule is data: a family of patterns plus the category, key and value
templates of the fact it produces. Templates are filled from the named groups
of the first matching pattern, plus ``{match}`` (the whole match) and
``{subject}`` (the subject's name). Placeholders in ``key`` are slugified.

Tightening or loosening extraction means editing this table, and bumping
``RULESET_VERSION`` when the produced keys change.
"""

import re
from dataclasses import dataclass

RULESET_VERSION = "4"

# Inputs shorter than this cannot carry a stable fact.
MIN_TEXT_LENGTH = 10

SKIP_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^(hi|hello|hey|thanks|thank you|ok|okay|yes|no|sure|alright)\b[\s!.,]*$",
        re.IGNORECASE,
    ),
    re.compile(r"^(i see|got it|understood|makes sense)\b[\s!.,]*$", re.IGNORECASE),
)


@dataclass(frozen=True)
class Rule:
    """One extraction rule: first matching pattern wins, fires once per call."""

    name: str
    category: str
    key: str
    value: str
    patterns: tuple[re.Pattern[str], ...]
    importance: int
    confidence: int


def _rule(
    name: str,
    category: str,
    key: str,
    value: str,
    *patterns: str,
    importance: int = 3,
    confidence: int = 3,
    flags: int = re.IGNORECASE,
) -> Rule:
    return Rule(
        name=name,
        category=category,
        key=key,
        value=value,
        patterns=tuple(re.compile(p, flags) for p in patterns),
        importance=importance,
        confidence=confidence,
    )


_PRONOUN = r"(?:he|she|they|i|we)"
_EVENT = r"(?P<event>[a-z][a-z' -]{2,40}?)"

RULES: tuple[Rule, ...] = (
    # Death / loss
    _rule(
        "deceased", "loss_grief", "is_deceased", "true",
        r"\b(died|passed away|passed on|deceased|rip|rest in peace)\b",
        r"\bno longer (with us|here|alive)\b",
        r"\blost (him|her|them)\b",
        r"\b(is|was) dead\b",
        importance=5, confidence=5,
    ),
    _rule(
        "time_since_passing", "timeline", "time_since_passing", "{ago}",
        r"\b(?:died|passed away|passed on|lost (?:him|her|them))\s+"
        r"(?P<ago>(?:\d+|a|an|one|two|three|four|five|six|seven|eight|nine|ten)"
        r"\s+(?:days?|weeks?|months?|years?)\s+ago|last (?:week|month|year))",
        importance=4, confidence=4,
    ),
    # Contextual age at event: one fact tying the event to the age
    _rule(
        "age_at_event", "timeline", "age_at_{event}", "{event} at age {age}",
        r"\b(?:had|got|developed|was diagnosed with|were diagnosed with|lost|started|began)\s+"
        + _EVENT + r"\s+when\s+" + _PRONOUN + r"\s+(?:was|were)\s+(?P<age>\d{1,3})\b",
        r"\b(?:had|got|developed|was diagnosed with|were diagnosed with|lost|started|began)\s+"
        + _EVENT + r"\s+at (?:the )?age (?:of )?(?P<age>\d{1,3})\b",
        importance=3, confidence=3,
    ),
    # Medical conditions: one rule per condition so distinct ones coexist
    _rule(
        "kidney_failure", "health", "medical_kidney_failure", "kidney failure (mentioned)",
        r"\bkidney (failure|disease)\b", r"\bdialysis\b",
        importance=3, confidence=4,
    ),
    _rule(
        "cancer", "health", "medical_cancer", "cancer (mentioned)",
        r"\b(cancer|tumou?r|malignant|chemo(therapy)?)\b",
        importance=3, confidence=4,
    ),
    _rule(
        "diabetes", "health", "medical_diabetes", "diabetes (mentioned)",
        r"\b(diabetes|diabetic)\b",
        importance=3, confidence=4,
    ),
    _rule(
        "heart_condition", "health", "medical_heart_condition", "heart condition (mentioned)",
        r"\b(heart attack|cardiac arrest|heart disease|heart failure)\b",
        importance=3, confidence=4,
    ),
    _rule(
        "stroke", "health", "medical_stroke", "stroke (mentioned)",
        r"\b(stroke|cerebrovascular)\b",
        importance=3, confidence=4,
    ),
    _rule(
        "cognitive_condition", "health", "medical_cognitive_condition",
        "cognitive condition (mentioned)",
        r"\b(alzheimer'?s?|dementia)\b",
        importance=3, confidence=4,
    ),
    _rule(
        "depression", "health", "medical_depression", "depression (mentioned)",
        r"\b(depression|depressed)\b",
        importance=3, confidence=3,
    ),
    _rule(
        "anxiety", "health", "medical_anxiety", "anxiety (mentioned)",
        r"\b(anxiety|panic attacks?)\b",
        importance=3, confidence=3,
    ),
    # How the subject relates to the user; first match wins
    _rule("relation_mother", "relationships", "relationship_type", "Mother",
          r"\bmy (mom|mum|mother)\b", importance=4, confidence=4),
    _rule("relation_father", "relationships", "relationship_type", "Father",
          r"\bmy (dad|father)\b", importance=4, confidence=4),
    _rule("relation_boyfriend", "relationships", "relationship_type", "Boyfriend",
          r"\bmy boyfriend\b", importance=4, confidence=4),
    _rule("relation_girlfriend", "relationships", "relationship_type", "Girlfriend",
          r"\bmy girlfriend\b", importance=4, confidence=4),
    _rule("relation_husband", "relationships", "relationship_type", "Husband",
          r"\bmy husband\b", importance=4, confidence=4),
    _rule("relation_wife", "relationships", "relationship_type", "Wife",
          r"\bmy wife\b", importance=4, confidence=4),
    _rule("relation_friend", "relationships", "relationship_type", "Friend",
          r"\bmy (best )?friend\b", importance=4, confidence=4),
    _rule("relation_brother", "relationships", "relationship_type", "Brother",
          r"\bmy brother\b", importance=4, confidence=4),
    _rule("relation_sister", "relationships", "relationship_type", "Sister",
          r"\bmy sister\b", importance=4, confidence=4),
    # Relationship status changes
    _rule(
        "relationship_divorced", "relationships", "relationship_status", "divorced/separated",
        r"\b(divorced|separated|split up)\b",
        r"\b(broke up|ended (the|their|our) relationship)\b",
        importance=4, confidence=4,
    ),
    _rule(
        "relationship_engaged", "relationships", "relationship_status", "engaged",
        r"\b(got engaged|is engaged|are engaged|engagement)\b",
        importance=4, confidence=4,
    ),
    _rule(
        "relationship_married", "relationships", "relationship_status", "married",
        r"\b(got married|is married|are married|were married|wedding)\b",
        importance=4, confidence=4,
    ),
    # Location / residence. Place names must be capitalized.
    _rule(
        "location", "location", "current_location", "{place}",
        r"\b(?i:moved to|living in|lives in|relocated to|moving to)\s+"
        r"(?P<place>[A-Z][\w'-]*(?:\s+[A-Z][\w'-]*){0,3})",
        r"\b(?i:lives|living|based)\s+(?i:in|near)\s+(?P<place>[A-Z][\w'-]*(?:\s+[A-Z][\w'-]*){0,3})",
        importance=2, confidence=3,
        flags=0,
    ),
    # Work / education
    _rule(
        "occupation", "work_career", "occupation", "{match}",
        r"\b(works|worked|working) (at|for|as) (a |an )?[\w&' -]{2,40}?(?=[.,;!?]|$| and\b| but\b)",
        r"\b(is|was) an? (nurse|professor|doctor|engineer|lawyer|chef|mechanic|"
        r"accountant|programmer|developer|designer|artist|musician|firefighter|"
        r"police officer|pilot|farmer|electrician|plumber|carpenter|manager)\b",
        importance=3, confidence=3,
    ),
    _rule(
        "retired", "work_career", "employment_status", "retired",
        r"\b(retired|retirement)\b",
        importance=3, confidence=3,
    ),
    _rule(
        "education", "work_career", "education", "{match}",
        r"\b(graduated from|studies at|studying at|studied at|goes to|went to) "
        r"[\w&' -]{2,40}?(university|college|school|academy)\b",
        r"\b(graduated|got (a|his|her|their) degree)\b",
        importance=3, confidence=3,
    ),
    # Family members
    _rule(
        "family_member", "family", "family_{member}", "{match}",
        r"\b(has|had) (a|an|two|three|four|\d+) (?:\w+ )?"
        r"(?P<member>sons?|daughters?|child|children|kids?|brothers?|sisters?|"
        r"grandchild(?:ren)?|twins?)\b",
        importance=3, confidence=3,
    ),
    # Hobbies / interests
    _rule(
        "hobby", "interests_hobbies", "hobby_{activity}", "{match}",
        r"\b(loves|loved|enjoys|enjoyed|is into|was into|is a fan of|was a fan of|"
        r"passionate about) (?!(?:me|him|her|them|us|you|it)\b)(?P<activity>[a-z][a-z' -]{2,30}?)(?=[.,;!?]|$| and\b| but\b| with\b)",
        r"\b(plays|played) (?P<activity>the [a-z]+|[a-z]+ball|golf|tennis|chess|soccer|"
        r"guitar|piano|violin|drums|hockey|cricket|rugby)\b",
        importance=2, confidence=3,
    ),
    # Major life events
    _rule(
        "life_event", "timeline", "life_event_{event}", "{match}",
        r"\b(had|has|survived|was in) (a|an) (?P<event>car accident|accident|surgery|"
        r"operation|miscarriage|baby|breakdown)\b",
        r"\b(?P<event>funeral|graduation|baptism|bar mitzvah|bat mitzvah)\b",
        importance=4, confidence=3,
    ),
    # Personality and habits
    _rule(
        "personality", "identity", "personality", "{match}",
        r"\b(is|was) (very|really|always|so) "
        r"(?!(?:sad|angry|upset|tired|sick|happy|hurt|bad|good|hard)\b)(?P<trait>[a-z]{3,20})\b",
        r"\b(tends to be|known for being) (?P<trait>[a-z]{3,20})\b",
        importance=2, confidence=3,
    ),
    _rule(
        "habit", "patterns", "habit", "{match}",
        r"\b(always|never|usually|often) (?!been\b)[a-z]+s\b[\w' -]{0,40}?(?=[.,;!?]|$)",
        r"\bevery (morning|evening|night|day|week|weekend|sunday|saturday)\b[\w' -]{0,40}?(?=[.,;!?]|$)",
        importance=2, confidence=2,
    ),
)
