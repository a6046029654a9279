"""Pydantic models for the debate arena."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    computed_field,
    field_validator,
)


# =============================================================================
# Enums
# =============================================================================


class RoomStatus(str, Enum):
    """Room lifecycle status."""

    WAITING_PARTICIPANT = "waiting_participant"
    AGENDA_NEGOTIATION = "agenda_negotiation"
    ARGUMENTS_SUBMISSION = "arguments_submission"
    DEBATE_ROUND_1 = "debate_round_1"
    WAITING_REBUTTAL_1 = "waiting_rebuttal_1"
    DEBATE_ROUND_2 = "debate_round_2"
    WAITING_REBUTTAL_2 = "waiting_rebuttal_2"
    DEBATE_ROUND_3 = "debate_round_3"
    AI_PROCESSING = "ai_processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RoomStatus.COMPLETED, RoomStatus.CANCELLED)


class RoomEvent(str, Enum):
    """Events that drive room transitions."""

    PARTICIPANT_JOINED = "PARTICIPANT_JOINED"
    MOTION_AGREED = "MOTION_AGREED"
    BOTH_ARGUMENTS_SUBMITTED = "BOTH_ARGUMENTS_SUBMITTED"
    ROUND_1_COMPLETE = "ROUND_1_COMPLETE"
    ROUND_2_COMPLETE = "ROUND_2_COMPLETE"
    ROUND_3_COMPLETE = "ROUND_3_COMPLETE"
    BOTH_REBUTTALS_SUBMITTED = "BOTH_REBUTTALS_SUBMITTED"
    JURY_COMPLETE = "JURY_COMPLETE"
    JUDGE_COMPLETE = "JUDGE_COMPLETE"
    CANCEL = "CANCEL"

    @classmethod
    def round_complete(cls, round_number: int) -> "RoomEvent":
        """Event emitted when AI debate round N finishes."""
        return cls(f"ROUND_{round_number}_COMPLETE")


class Side(str, Enum):
    """Debate side."""

    A = "A"
    B = "B"

    @property
    def opponent(self) -> "Side":
        return Side.B if self is Side.A else Side.A


class JobType(str, Enum):
    """Kinds of asynchronous work."""

    AI_DEBATE = "ai_debate"
    AI_JURY = "ai_jury"
    AI_JUDGE = "ai_judge"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class MotionStatus(str, Enum):
    """Motion negotiation status."""

    PROPOSED = "proposed"
    AGREED = "agreed"


class RoundStatus(str, Enum):
    """AI debate round status."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TurnStatus(str, Enum):
    """Debate turn status."""

    PENDING = "pending"
    COMPLETED = "completed"


class GenerationKind(str, Enum):
    """Structured output kinds requested from the generative client."""

    ADVOCATE = "advocate"
    JUROR = "juror"
    JUDGE = "judge"


class ConsensusLevel(str, Enum):
    """Strength of jury agreement."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# Stored Records
# =============================================================================


class Record(BaseModel):
    """Base for records loaded from the store."""

    model_config = ConfigDict(from_attributes=True)


class Room(Record):
    id: str
    code: str
    title: str
    description: str | None = None
    creator_id: str
    participant_id: str | None = None
    status: RoomStatus
    created_at: datetime
    updated_at: datetime

    def side_of(self, user_id: str) -> Side | None:
        """Side played by a user, or None for outsiders."""
        if user_id == self.creator_id:
            return Side.A
        if self.participant_id is not None and user_id == self.participant_id:
            return Side.B
        return None


class Motion(Record):
    id: str
    room_id: str
    title: str
    description: str = ""
    proposer_id: str
    status: MotionStatus
    agreed_at: datetime | None = None


class Argument(Record):
    id: str
    room_id: str
    user_id: str
    side: Side
    title: str
    content: str
    evidence: list[str] = Field(default_factory=list)
    created_at: datetime


class Rebuttal(Record):
    id: str
    room_id: str
    user_id: str
    side: Side
    round_number: int
    content: str
    evidence: list[str] = Field(default_factory=list)
    created_at: datetime


class DebateTurn(Record):
    id: str
    round_id: str
    turn_number: int
    side: Side
    content: str
    key_points: list[str] = Field(default_factory=list)
    counter_arguments: list[str] = Field(default_factory=list)
    evidence_references: list[str] = Field(default_factory=list)
    status: TurnStatus
    is_fallback: bool = False
    completed_at: datetime | None = None


class Round(Record):
    id: str
    room_id: str
    round_number: int
    status: RoundStatus
    completed_at: datetime | None = None
    turns: list[DebateTurn] = Field(default_factory=list)


class JuryVote(Record):
    id: str
    room_id: str
    juror_number: int
    vote: Side
    confidence: int
    reasoning: str
    key_factors: list[str] = Field(default_factory=list)
    is_fallback: bool = False


class JudgeDecision(Record):
    id: str
    room_id: str
    winner: Side
    reasoning: str
    score_a: int
    score_b: int
    content: dict[str, Any] = Field(default_factory=dict)
    is_fallback: bool = False
    created_at: datetime


class Job(Record):
    id: str
    type: JobType
    status: JobStatus
    room_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    progress: int = 0
    retry_count: int = 0
    max_retries: int = 3
    dedupe_key: str | None = None
    scheduled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


# =============================================================================
# Debate Context Snapshots
# =============================================================================


class MotionSnapshot(BaseModel):
    title: str
    description: str = ""


class ArgumentSnapshot(BaseModel):
    side: Side
    title: str
    content: str
    evidence: list[str] = Field(default_factory=list)


class TurnSnapshot(BaseModel):
    side: Side
    content: str
    key_points: list[str] = Field(default_factory=list)


class RebuttalSnapshot(BaseModel):
    side: Side
    content: str


class RoundTranscript(BaseModel):
    round_number: int
    turns: list[TurnSnapshot] = Field(default_factory=list)
    rebuttals: list[RebuttalSnapshot] = Field(default_factory=list)


class DebateContext(BaseModel):
    """Everything a juror or judge needs to see about a debate."""

    room_id: str
    motion: MotionSnapshot
    argument_a: ArgumentSnapshot
    argument_b: ArgumentSnapshot
    rounds: list[RoundTranscript] = Field(default_factory=list)


class VoteSnapshot(BaseModel):
    juror_number: int
    vote: Side
    confidence: int
    reasoning: str


# =============================================================================
# Job Payloads (tagged by job type)
# =============================================================================


class AIDebatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal[JobType.AI_DEBATE] = JobType.AI_DEBATE
    round_number: int = Field(ge=1, le=3)


class AIJuryPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal[JobType.AI_JURY] = JobType.AI_JURY
    context: DebateContext


class AIJudgePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal[JobType.AI_JUDGE] = JobType.AI_JUDGE
    context: DebateContext
    jury_votes: list[VoteSnapshot] = Field(default_factory=list)


JobPayload = Annotated[
    Union[AIDebatePayload, AIJuryPayload, AIJudgePayload],
    Field(discriminator="type"),
]

job_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


# =============================================================================
# Generative Output Schemas
# =============================================================================


class AdvocateStatement(BaseModel):
    """Structured statement from an AI advocate."""

    statement: str = Field(min_length=50, max_length=4000)
    key_points: list[str] = Field(min_length=2, max_length=5)
    counter_arguments: list[str] = Field(min_length=1, max_length=3)
    evidence_references: list[str] = Field(default_factory=list, max_length=5)


class JurorBallot(BaseModel):
    """Structured vote from an AI juror."""

    vote: Side
    reasoning: str = Field(min_length=20, max_length=1500)
    confidence: int = Field(ge=1, le=10)
    key_factors: list[str] = Field(min_length=1, max_length=3)

    @field_validator("vote", mode="before")
    @classmethod
    def normalise_vote(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class JudgeRuling(BaseModel):
    """Structured final verdict from the AI judge."""

    summary: str = Field(min_length=20, max_length=1500)
    analysis_a: str = Field(min_length=20, max_length=3000)
    analysis_b: str = Field(min_length=20, max_length=3000)
    strengths_a: list[str] = Field(min_length=1, max_length=5)
    weaknesses_a: list[str] = Field(min_length=1, max_length=5)
    strengths_b: list[str] = Field(min_length=1, max_length=5)
    weaknesses_b: list[str] = Field(min_length=1, max_length=5)
    reasoning: str = Field(min_length=50, max_length=3000)
    winner: Side
    score_a: int = Field(ge=0, le=100)
    score_b: int = Field(ge=0, le=100)

    @field_validator("winner", mode="before")
    @classmethod
    def normalise_winner(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class TokenUsage(BaseModel):
    """Token usage tracking."""

    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class GenerationResult(BaseModel):
    """Validated output of one generative call."""

    kind: GenerationKind
    data: AdvocateStatement | JurorBallot | JudgeRuling
    is_fallback: bool = False
    model: str = ""
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


# =============================================================================
# Aggregation
# =============================================================================


class JuryTally(BaseModel):
    """Aggregate of a room's jury votes."""

    votes_a: int = 0
    votes_b: int = 0
    total_votes: int = 0
    expected_jurors: int = 0
    majority_side: Side | None = None
    consensus_level: ConsensusLevel | None = None
    average_confidence: float = 0.0


# =============================================================================
# API Request/Response Models
# =============================================================================


class CreateRoomRequest(BaseModel):
    title: str = Field(min_length=5, max_length=200)
    description: str | None = Field(default=None, max_length=1000)


class JoinRoomRequest(BaseModel):
    code: str = Field(pattern=r"^[A-Z0-9]{6}$")


class ProposeMotionRequest(BaseModel):
    title: str = Field(min_length=5, max_length=300)
    description: str = Field(default="", max_length=2000)


class SubmitArgumentRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=10, max_length=10000)
    evidence: list[str] = Field(default_factory=list, max_length=10)


class SubmitRebuttalRequest(BaseModel):
    content: str = Field(min_length=10, max_length=10000)
    evidence: list[str] = Field(default_factory=list, max_length=10)


class RoomDetailResponse(BaseModel):
    room: Room
    motion: Motion | None = None
    arguments: list[Argument] = Field(default_factory=list)
    rebuttals: list[Rebuttal] = Field(default_factory=list)
    rounds: list[Round] = Field(default_factory=list)
    jury_votes: list[JuryVote] = Field(default_factory=list)
    jury_tally: JuryTally | None = None
    judge_decision: JudgeDecision | None = None
    failed_jobs: list[Job] = Field(default_factory=list)


class JobStats(BaseModel):
    total: int = 0
    queued: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    average_execution_seconds: float = 0.0


class DrainReport(BaseModel):
    """Outcome of one drain cycle."""

    claimed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    discarded: int = 0
    recovered: int = 0
    repaired: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def processed(self) -> int:
        return self.succeeded + self.retried + self.failed + self.discarded


class HealthResponse(BaseModel):
    status: str
    version: str


# =============================================================================
# Generation Contexts
# =============================================================================


class AdvocateContext(BaseModel):
    """What an AI advocate sees when writing one debate turn."""

    side: Side
    round_number: int = Field(ge=1, le=3)
    motion: MotionSnapshot
    own_argument: ArgumentSnapshot
    opponent_argument: ArgumentSnapshot
    prior_rounds: list[RoundTranscript] = Field(default_factory=list)


class JurorContext(BaseModel):
    juror_number: int = Field(ge=1)
    debate: DebateContext


class JudgeContext(BaseModel):
    debate: DebateContext
    jury_votes: list[VoteSnapshot] = Field(default_factory=list)
    tally: JuryTally | None = None


GenerationContext = AdvocateContext | JurorContext | JudgeContext
