"""
Pattern Analysis Service - derives behavioral signals from recent chats,
journal entries and mood logs, and folds them into the personalization profile.

No model call is involved: every detector is a keyword / length / ratio heuristic.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from crud.personalization import PersonalizationRepository
from crud.tracking import ChatSessionRepository, JournalRepository, MoodRepository
from database_models import ChatSession, JournalEntry, Personalization, utcnow
from models.patterns import (
    Pattern,
    PatternType,
    CommunicationStylePattern,
    VerbosityPattern,
    TopicPreferencePattern,
    EngagementPattern,
    TimeAnalysis,
)

logger = logging.getLogger(__name__)

# History caps per analysis
MAX_SESSIONS = 50
MAX_JOURNALS = 30
MAX_MOODS = 100

MIN_STYLE_MESSAGES = 5
MIN_VERBOSITY_MESSAGES = 5
MIN_TOPIC_TEXTS = 3
MIN_ENGAGEMENT_SESSIONS = 3

# Patterns below either threshold are dropped from analysis results
MIN_CONFIDENCE = 0.5
MIN_SAMPLE_SIZE = 3

# Profile updates only trust inferences above this
CONFIDENT = 0.6

MAX_PREFERRED_TOPICS = 10
MAX_TENDENCIES = 20

# Plausible session length in minutes, exclusive bounds
MAX_SESSION_MINUTES = 180

STYLES = ("gentle", "direct", "supportive")
VERBOSITY_LEVELS = ("concise", "moderate", "detailed")

TOPIC_KEYWORDS: Dict[str, List[str]] = {
    "anxiety": ["anxious", "worry", "nervous", "stress", "panic"],
    "depression": ["sad", "down", "depressed", "hopeless", "empty"],
    "relationships": ["friend", "family", "partner", "relationship", "love"],
    "work": ["work", "job", "career", "boss", "colleague"],
    "health": ["health", "sleep", "exercise", "physical", "body"],
    "goals": ["goal", "achieve", "plan", "future", "target"],
    "mindfulness": ["mindful", "meditation", "breath", "present", "aware"],
}

VERBOSITY_EVIDENCE = {
    "concise": "User often receives concise responses",
    "moderate": "User balanced between concise and detailed",
    "detailed": "User prefers detailed explanations",
}

ENGAGEMENT_FREQUENCY = {"high": 0.8, "medium": 0.5, "low": 0.2}


def _messages(sessions: Iterable[ChatSession]) -> List[dict]:
    return [m for s in sessions for m in (s.messages or [])]


def _content(message: dict) -> str:
    return message.get("content") or ""


def _duration_minutes(session: ChatSession) -> Optional[float]:
    if not session.start_time or not session.end_time:
        return None
    return (session.end_time - session.start_time).total_seconds() / 60


def detect_communication_style(sessions: Sequence[ChatSession]) -> Optional[CommunicationStylePattern]:
    """
    Classify the user's own messages as gentle, direct or supportive.

    Needs at least 5 user messages. A message counts as a question when it
    contains "?", "what" or "how"; short is under 50 characters, long over 200.
    """
    user_messages = [m for m in _messages(sessions) if m.get("role") == "user"]
    total = len(user_messages)
    if total < MIN_STYLE_MESSAGES:
        return None

    questions = statements = short = long = formal = casual = 0
    for message in user_messages:
        content = _content(message).lower()
        if "?" in content or "what" in content or "how" in content:
            questions += 1
        else:
            statements += 1
        if len(content) < 50:
            short += 1
        if len(content) > 200:
            long += 1
        if "please" in content or "thank" in content or "would you" in content:
            formal += 1
        elif "hey" in content or "yeah" in content or "ok" in content:
            casual += 1

    if questions / total > 0.6 and formal / total > 0.3:
        style, evidence, frequency = "gentle", "High question frequency with formal tone", questions / total
    elif short / total > 0.5 and statements / total > 0.6:
        style, evidence, frequency = "direct", "Prefers short, direct statements", statements / total
    elif long / total > 0.4 and casual / total > 0.3:
        style, evidence, frequency = "supportive", "Detailed messages with casual, friendly tone", long / total
    else:
        return None

    return CommunicationStylePattern(
        evidence=[evidence],
        confidence=min(0.9, 0.5 + (total / 50) * 0.4),
        frequency=frequency,
        sample_size=total,
        style=style,
    )


def detect_verbosity(sessions: Sequence[ChatSession]) -> Optional[VerbosityPattern]:
    """
    Bucket assistant replies by estimated token count (4 characters per token):
    concise under 150, moderate up to 400, detailed beyond. The most common
    bucket wins; ties go to the shorter bucket.
    """
    messages = _messages(sessions)
    if len(messages) < MIN_VERBOSITY_MESSAGES:
        return None
    replies = [m for m in messages if m.get("role") == "assistant"]
    total = len(replies)
    if total == 0:
        return None

    buckets = Counter()
    for reply in replies:
        tokens = len(_content(reply)) / 4
        if tokens < 150:
            buckets["concise"] += 1
        elif tokens <= 400:
            buckets["moderate"] += 1
        else:
            buckets["detailed"] += 1

    verbosity = max(VERBOSITY_LEVELS, key=lambda level: buckets[level])
    return VerbosityPattern(
        evidence=[VERBOSITY_EVIDENCE[verbosity]],
        confidence=min(0.85, 0.5 + (total / 30) * 0.35),
        frequency=buckets[verbosity] / total,
        sample_size=total,
        verbosity=verbosity,
    )


def detect_topic_preference(
    sessions: Sequence[ChatSession],
    journals: Sequence[JournalEntry],
) -> Optional[TopicPreferencePattern]:
    """Rank topics by keyword hits across user messages and journal text; report the top 3."""
    texts = [_content(m) for m in _messages(sessions) if m.get("role") == "user"]
    texts += [f"{j.title or ''} {j.content or ''}" for j in journals]
    if len(texts) < MIN_TOPIC_TEXTS:
        return None

    counts: Dict[str, int] = {}
    for text in texts:
        lowered = text.lower()
        for topic, keywords in TOPIC_KEYWORDS.items():
            hits = sum(1 for keyword in keywords if keyword in lowered)
            if hits:
                counts[topic] = counts.get(topic, 0) + hits

    if not counts:
        return None

    # sorted() is stable, so equal counts keep first-seen order
    topics = [topic for topic, _ in sorted(counts.items(), key=lambda item: -item[1])[:3]]
    mentions = sum(counts.values())
    return TopicPreferencePattern(
        evidence=[f"Most discussed topics: {', '.join(topics)}"],
        confidence=min(0.8, 0.5 + (mentions / 20) * 0.3),
        frequency=counts[topics[0]] / mentions,
        sample_size=len(texts),
        topics=topics,
    )


def detect_engagement(sessions: Sequence[ChatSession]) -> Optional[EngagementPattern]:
    """
    high: more than 10 messages and 15 minutes per session on average;
    low: under 3 messages or under 5 minutes; medium otherwise.
    Sessions without an end time count as zero minutes.
    """
    count = len(sessions)
    if count < MIN_ENGAGEMENT_SESSIONS:
        return None

    average_messages = sum(len(s.messages or []) for s in sessions) / count
    average_duration = sum(_duration_minutes(s) or 0.0 for s in sessions) / count

    if average_messages > 10 and average_duration > 15:
        level, evidence = "high", "Long sessions with many messages indicate high engagement"
    elif average_messages < 3 or average_duration < 5:
        level, evidence = "low", "Short sessions with few messages indicate lower engagement"
    else:
        level, evidence = "medium", "Moderate engagement with balanced session length"

    return EngagementPattern(
        evidence=[evidence],
        confidence=min(0.75, 0.5 + (count / 20) * 0.25),
        frequency=ENGAGEMENT_FREQUENCY[level],
        sample_size=count,
        level=level,
        average_messages=average_messages,
        average_duration=average_duration,
    )


def _weekday(moment: datetime) -> int:
    """Day of week with Sunday = 0."""
    return (moment.weekday() + 1) % 7


def _preferred(counts: Counter, total: int, share: float, top: int) -> List[int]:
    frequent = [key for key, hits in counts.items() if hits / total >= share]
    return sorted(frequent, key=lambda key: (-counts[key], key))[:top]


def summarize_time_patterns(sessions: Sequence[ChatSession]) -> TimeAnalysis:
    """
    Preferred hours (in at least 20% of sessions, top 6), preferred days
    (at least 25%, top 4), mean session length and its interquartile range.
    Durations outside (0, 180) minutes are ignored.
    """
    if not sessions:
        return TimeAnalysis()

    hours: Counter = Counter()
    days: Counter = Counter()
    durations: List[float] = []
    for session in sessions:
        hours[session.start_time.hour] += 1
        days[_weekday(session.start_time)] += 1
        duration = _duration_minutes(session)
        if duration is not None and 0 < duration < MAX_SESSION_MINUTES:
            durations.append(duration)

    total = len(sessions)
    analysis = TimeAnalysis(
        preferred_hours=_preferred(hours, total, 0.2, 6),
        preferred_days=_preferred(days, total, 0.25, 4),
    )
    if durations:
        durations.sort()
        n = len(durations)
        analysis.average_session_duration = sum(durations) / n
        analysis.typical_range = (durations[int(n * 0.25)], durations[int(n * 0.75)])
    return analysis


def default_profile(user_id: int, now: datetime) -> Personalization:
    """A fresh profile with neutral defaults."""
    stamp = now.isoformat()
    return Personalization(
        user_id=user_id,
        intent={
            "primary_goals": [],
            "current_focus": [],
            "priorities": {},
            "last_goals_update": stamp,
        },
        communication={
            "style": "gentle",
            "verbosity": "moderate",
            "response_format": "conversational",
            "emoji_usage": "minimal",
            "topics_to_avoid": [],
            "preferred_topics": [],
        },
        behavioral_tendencies=[],
        time_patterns={},
        engagement={
            "average_session_length": 0,
            "messages_per_session": 0,
            "session_frequency": 0,
            "response_quality": 0.5,
            "last_engagement": stamp,
            "engagement_trend": "stable",
        },
        user_overrides={},
        explainability={
            "active_rules": [],
            "inferred_patterns": [],
            "last_explained": stamp,
        },
        data_quality=0.3,
        decay_rate=0.05,
        personalization_enabled=True,
        version=1,
        last_analysis=now,
        last_updated=now,
        created_at=now,
    )


def _find(patterns: Sequence[Pattern], kind: PatternType) -> Optional[Pattern]:
    return next((p for p in patterns if p.kind is kind), None)


def merge_tendencies(existing: List[dict], patterns: Sequence[Pattern], now: datetime) -> List[dict]:
    """
    Fold patterns into the stored tendencies. A pattern whose evidence text
    matches a stored tendency updates it; an unmatched confident pattern is
    added. The 20 most confident tendencies are kept.
    """
    stamp = now.isoformat()
    tendencies = [dict(t) for t in existing]
    for pattern in patterns:
        text = pattern.evidence_text
        match = next((t for t in tendencies if t.get("pattern") == text), None)
        if match:
            match["frequency"] = (match["frequency"] + pattern.frequency) / 2
            match["confidence"] = max(match["confidence"], pattern.confidence)
            match["sample_size"] = match.get("sample_size", 0) + pattern.sample_size
            match["last_observed"] = stamp
        elif pattern.confidence > CONFIDENT:
            tendencies.append({
                "pattern": text,
                "type": pattern.kind.value,
                "frequency": pattern.frequency,
                "confidence": pattern.confidence,
                "first_observed": stamp,
                "last_observed": stamp,
                "sample_size": pattern.sample_size,
            })

    tendencies.sort(key=lambda t: t["confidence"], reverse=True)
    return tendencies[:MAX_TENDENCIES]


class PatternAnalysisService:
    """
    Service class for deriving patterns from a user's history and
    applying them to the personalization profile.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sessions = ChatSessionRepository(db)
        self.journals = JournalRepository(db)
        self.moods = MoodRepository(db)
        self.profiles = PersonalizationRepository(db)

    async def analyze_patterns(
        self,
        user_id: int,
        window_days: int = 30,
        now: Optional[datetime] = None,
    ) -> List[Pattern]:
        """
        Run every detector over the last ``window_days`` of history.

        Returns:
            Patterns with confidence above 0.5 and at least 3 samples;
            an empty list if loading or analysis fails
        """
        since = (now or utcnow()) - timedelta(days=window_days)
        try:
            sessions = await self.sessions.list_recent(user_id, since, MAX_SESSIONS)
            journals = await self.journals.list_recent(user_id, since, MAX_JOURNALS)
            # Loaded with the rest of the history; no detector scores moods yet
            await self.moods.list_recent(user_id, since, MAX_MOODS)

            candidates = [
                detect_communication_style(sessions),
                detect_verbosity(sessions),
                detect_topic_preference(sessions, journals),
                detect_engagement(sessions),
            ]
        except Exception as e:
            logger.error(f"Error analyzing patterns for user {user_id}: {e}", exc_info=True)
            return []

        return [
            p for p in candidates
            if p is not None and p.confidence > MIN_CONFIDENCE and p.sample_size >= MIN_SAMPLE_SIZE
        ]

    async def analyze_time_patterns(
        self,
        user_id: int,
        window_days: int = 30,
        now: Optional[datetime] = None,
    ) -> TimeAnalysis:
        """When the user tends to show up and for how long. Empty analysis on failure."""
        since = (now or utcnow()) - timedelta(days=window_days)
        try:
            sessions = await self.sessions.list_recent(user_id, since)
            return summarize_time_patterns(sessions)
        except Exception as e:
            logger.error(f"Error analyzing time patterns for user {user_id}: {e}", exc_info=True)
            return TimeAnalysis()

    async def get_or_create_profile(self, user_id: int, now: Optional[datetime] = None) -> Personalization:
        profile = await self.profiles.get_by_user(user_id)
        if profile is None:
            profile = await self.profiles.create(default_profile(user_id, now or utcnow()))
        return profile

    async def update_profile(
        self,
        user_id: int,
        patterns: Sequence[Pattern],
        time_analysis: TimeAnalysis,
        now: Optional[datetime] = None,
    ) -> Personalization:
        """
        Apply analysis results to the user's profile, creating it on first use.

        Inferred style and verbosity are only taken from confident patterns
        and never replace a value the user set explicitly.

        Raises:
            Exception: any database error, after logging it
        """
        now = now or utcnow()
        try:
            profile = await self.get_or_create_profile(user_id, now)
            overrides = profile.user_overrides or {}

            profile.time_patterns = {
                "hour_of_day": list(time_analysis.preferred_hours),
                "day_of_week": list(time_analysis.preferred_days),
                "session_duration": {
                    "average": time_analysis.average_session_duration,
                    "typical_range": list(time_analysis.typical_range),
                },
                "last_active_time": now.isoformat(),
            }

            communication = dict(profile.communication or {})
            style = _find(patterns, PatternType.COMMUNICATION_STYLE)
            if style and style.confidence > CONFIDENT and not overrides.get("communication_style"):
                communication["inferred_style"] = style.style

            verbosity = _find(patterns, PatternType.VERBOSITY)
            if verbosity and verbosity.confidence > CONFIDENT and not overrides.get("verbosity"):
                communication["verbosity"] = verbosity.verbosity

            topics = _find(patterns, PatternType.TOPIC_PREFERENCE)
            if topics and topics.confidence > MIN_CONFIDENCE:
                merged = list(communication.get("preferred_topics") or [])
                merged += [t for t in topics.topics if t not in merged]
                communication["preferred_topics"] = merged[:MAX_PREFERRED_TOPICS]

            engagement = _find(patterns, PatternType.ENGAGEMENT)
            if engagement:
                if engagement.frequency > 0.7:
                    trend = "increasing"
                elif engagement.frequency < 0.3:
                    trend = "decreasing"
                else:
                    trend = "stable"
                profile.engagement = {
                    **(profile.engagement or {}),
                    "average_session_length": engagement.average_duration,
                    "messages_per_session": engagement.average_messages,
                    "last_engagement": now.isoformat(),
                    "engagement_trend": trend,
                }

            tendencies = merge_tendencies(profile.behavioral_tendencies or [], patterns, now)

            if communication != (profile.communication or {}) or tendencies != (profile.behavioral_tendencies or []):
                profile.version = (profile.version or 1) + 1
            profile.communication = communication
            profile.behavioral_tendencies = tendencies

            profile.explainability = {
                **(profile.explainability or {}),
                "inferred_patterns": [
                    {"type": p.kind.value, "evidence": p.evidence_text, "confidence": p.confidence}
                    for p in patterns
                ],
                "last_explained": now.isoformat(),
            }

            total_samples = sum(p.sample_size for p in patterns)
            profile.data_quality = min(1.0, 0.3 + (total_samples / 100) * 0.7)
            profile.last_analysis = now
            profile.last_updated = now

            await self.profiles.save(profile)
            logger.info(f"Updated personalization for user {user_id} with {len(patterns)} patterns")
            return profile
        except Exception as e:
            logger.error(f"Error updating personalization for user {user_id}: {e}", exc_info=True)
            raise

    async def set_overrides(
        self,
        user_id: int,
        communication_style: Optional[str] = None,
        verbosity: Optional[str] = None,
    ) -> Personalization:
        """
        Record explicit user preferences. Overridden attributes are applied
        directly and shielded from later inference.

        Raises:
            ValueError: for an unknown style or verbosity level
        """
        if communication_style is not None and communication_style not in STYLES:
            raise ValueError(f"Unknown communication style: {communication_style}")
        if verbosity is not None and verbosity not in VERBOSITY_LEVELS:
            raise ValueError(f"Unknown verbosity: {verbosity}")

        now = utcnow()
        profile = await self.get_or_create_profile(user_id, now)
        overrides = dict(profile.user_overrides or {})
        communication = dict(profile.communication or {})
        if communication_style is not None:
            overrides["communication_style"] = communication_style
            communication["style"] = communication_style
        if verbosity is not None:
            overrides["verbosity"] = verbosity
            communication["verbosity"] = verbosity

        if communication != (profile.communication or {}):
            profile.version = (profile.version or 1) + 1
        profile.user_overrides = overrides
        profile.communication = communication
        profile.last_updated = now
        await self.profiles.save(profile)
        return profile


def serialize_profile(profile: Personalization) -> dict:
    return {
        "user_id": profile.user_id,
        "communication": profile.communication,
        "behavioral_tendencies": profile.behavioral_tendencies,
        "time_patterns": profile.time_patterns,
        "engagement": profile.engagement,
        "user_overrides": profile.user_overrides,
        "explainability": profile.explainability,
        "data_quality": profile.data_quality,
        "personalization_enabled": profile.personalization_enabled,
        "version": profile.version,
        "last_analysis": profile.last_analysis.isoformat() if profile.last_analysis else None,
    }
