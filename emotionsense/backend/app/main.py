from __future__ import annotations

import json
import logging
import os
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from dotenv import load_dotenv
from pydantic import BaseModel
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, create_engine, text
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from .alert_service import (
    compute_patient_status,
    compute_self_alert,
    list_at_risk_patients,
    list_patient_statuses,
    mark_patient_safe,
    remove_patient_override,
)
from .classifier import build_demo_probabilities, simulate_classification
from .risk_engine import as_utc, filter_entries_by_period, resolve_timezone

APP_VERSION = "1.0.0"
REPO_ROOT = Path(__file__).resolve().parents[3]
load_dotenv(REPO_ROOT / ".env")

logging.basicConfig(
    level=os.getenv("EMOTIONSENSE_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def resolve_db_path() -> str:
    db_env = (os.getenv("EMOTIONSENSE_DB_PATH") or os.getenv("DB_PATH") or "").strip()
    db_path = Path(db_env) if db_env else (REPO_ROOT / "emotionsense.db")
    if not db_path.is_absolute():
        db_path = REPO_ROOT / db_path
    return str(db_path)


DB_PATH = resolve_db_path()
logger.info("Using database at %s", DB_PATH)
DATABASE_URL = f"sqlite:///{DB_PATH}"
SECRET_KEY = os.getenv("EMOTIONSENSE_SECRET_KEY", "CHANGE_ME")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24
DAY_TIMEZONE = resolve_timezone()

PATIENT = "patient"
PSYCHOLOGIST = "psychologist"
ROLES = {PATIENT, PSYCHOLOGIST}

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default=PATIENT)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    diary_entries = relationship("DiaryEntry", back_populates="user")


class DiaryEntry(Base):
    __tablename__ = "diary_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(String, nullable=False)
    label = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    probabilities_json = Column(String, nullable=False, default="[]")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    is_demo = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="diary_entries")


class AlertOverride(Base):
    __tablename__ = "alert_overrides"

    patient_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    issued_at = Column(DateTime, nullable=False)
    issued_by = Column(Integer, ForeignKey("users.id"), nullable=False)


class PsychologistNote(Base):
    __tablename__ = "psychologist_notes"

    id = Column(Integer, primary_key=True, index=True)
    psychologist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    note = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    psychologist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sender_role = Column(String, nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class DiaryRecordStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_entries(self, patient_id) -> List[DiaryEntry]:
        return (
            self.db.query(DiaryEntry)
            .filter(DiaryEntry.user_id == int(patient_id))
            .order_by(DiaryEntry.created_at.desc())
            .all()
        )


class SqlOverrideStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_override(self, patient_id) -> Optional[AlertOverride]:
        return self.db.get(AlertOverride, int(patient_id))

    def set_override(self, patient_id, clinician_id, now: datetime) -> AlertOverride:
        override = self.db.merge(AlertOverride(
            patient_id=int(patient_id),
            issued_at=as_utc(now).replace(tzinfo=None),
            issued_by=int(clinician_id),
        ))
        self.db.commit()
        return override

    def remove_override(self, patient_id) -> bool:
        deleted = (
            self.db.query(AlertOverride)
            .filter(AlertOverride.patient_id == int(patient_id))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted > 0


class TokenResponse(BaseModel):
    access_token: str
    token_type: str


class RegisterRequest(BaseModel):
    email: str
    name: str
    password: str
    role: str = PATIENT


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    role: str
    created_at: datetime


class DiaryCreate(BaseModel):
    content: str


class DiaryResponse(BaseModel):
    id: int
    content: str
    label: str
    confidence: float
    probabilities: List[dict]
    created_at: datetime


class SelfAlertResponse(BaseModel):
    level: str
    message: str
    consecutive_days: int


class DiaryCreateResponse(BaseModel):
    entry: DiaryResponse
    self_alert: Optional[SelfAlertResponse] = None


class PatientStatusResponse(BaseModel):
    patient_id: str
    patient_name: str
    patient_email: str
    alert_level: str
    total_entries: int
    negative_count: int
    negative_percentage: int
    last_entry_at: Optional[datetime] = None
    consecutive_negative_days: int


class OverrideResponse(BaseModel):
    patient_id: int
    issued_at: datetime
    issued_by: int
    alert_level: str


class NoteCreate(BaseModel):
    note: str


class NoteResponse(BaseModel):
    id: int
    psychologist_id: int
    patient_id: int
    note: str
    created_at: datetime


class FeedbackCreate(BaseModel):
    message: str


class FeedbackResponse(BaseModel):
    id: int
    psychologist_id: int
    patient_id: int
    message: str
    is_read: bool
    created_at: datetime


class MessageCreate(BaseModel):
    message: str


class MessageResponse(BaseModel):
    id: int
    sender_id: int
    sender_role: str
    patient_id: int
    message: str
    is_read: bool
    created_at: datetime


app = FastAPI(title="EmotionSense API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


DEMO_PATIENT_EMAIL = "patient@demo.com"
DEMO_PSYCHOLOGIST_EMAIL = "psychologist@demo.com"
DEMO_PASSWORD = "demo123"

DEMO_DIARY = [
    {"days_ago": 14, "emotion": "Happy", "text": "I felt really happy today because I got a good grade on my exam."},
    {"days_ago": 13, "emotion": "Happy", "text": "Glad I could spend the weekend with my family."},
    {"days_ago": 12, "emotion": "Fear", "text": "A little anxious about tomorrow's presentation, hope it goes well."},
    {"days_ago": 11, "emotion": "Happy", "text": "The presentation went fine, I'm relieved and happy with the result."},
    {"days_ago": 10, "emotion": "Neutral", "text": "An ordinary day, nothing special happened."},
    {"days_ago": 9, "emotion": "Sad", "text": "I feel sad because my best friend moved to another city."},
    {"days_ago": 8, "emotion": "Sad", "text": "Still lonely without my friend, it's hard to focus on studying."},
    {"days_ago": 7, "emotion": "Angry", "text": "Annoyed with teammates who won't cooperate."},
    {"days_ago": 6, "emotion": "Neutral", "text": "A bit better today, trying to think positively."},
    {"days_ago": 5, "emotion": "Fear", "text": "I'm afraid I won't finish my thesis on time."},
    {"days_ago": 4, "emotion": "Sad", "text": "Very stressed by all the deadlines piling up."},
    {"days_ago": 3, "emotion": "Sad", "text": "I cried last night, I feel unable to cope with all of this."},
    {"days_ago": 2, "emotion": "Fear", "text": "Couldn't sleep well, my thoughts keep spinning around my problems."},
    {"days_ago": 1, "emotion": "Happy", "text": "Slightly better today, my friends cheered me up."},
    {"days_ago": 0, "emotion": "Sad", "text": "Trying to stay strong, but sometimes I feel emotionally exhausted."},
]

DEMO_FEEDBACK = [
    {
        "days_ago": 2,
        "is_read": False,
        "message": "I noticed your emotions have leaned sad over the last few days. "
                   "Feel free to share what you are going through. You are not alone.",
    },
    {
        "days_ago": 5,
        "is_read": True,
        "message": "Great job keeping up with your diary. It's a positive step for your mental health. Keep going!",
    },
]

DEMO_NOTE = "Patient shows an increasing negative emotion pattern over the last week. Needs further monitoring."


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError as exc:
        raise credentials_exception from exc

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        raise credentials_exception
    return user


def get_current_patient(user: User = Depends(get_current_user)) -> User:
    if user.role != PATIENT:
        raise HTTPException(status_code=403, detail="Patient access only")
    return user


def get_current_psychologist(user: User = Depends(get_current_user)) -> User:
    if user.role != PSYCHOLOGIST:
        raise HTTPException(status_code=403, detail="Psychologist access only")
    return user


def get_patient_or_404(patient_id: int, db: Session) -> User:
    patient = db.query(User).filter(User.id == patient_id, User.role == PATIENT).first()
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


def is_dev_mode() -> bool:
    value = os.getenv("EMOTIONSENSE_DEV_MODE", "").strip().lower()
    alt = os.getenv("DEV_MODE", "").strip().lower()
    return value in {"1", "true", "yes", "on"} or alt in {"1", "true", "yes", "on"}


def to_user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name, role=user.role, created_at=user.created_at)


def to_diary_response(entry: DiaryEntry) -> DiaryResponse:
    return DiaryResponse(
        id=entry.id,
        content=entry.content,
        label=entry.label,
        confidence=entry.confidence,
        probabilities=json.loads(entry.probabilities_json or "[]"),
        created_at=entry.created_at,
    )


def to_self_alert_response(alert) -> Optional[SelfAlertResponse]:
    if alert is None:
        return None
    return SelfAlertResponse(**alert.to_dict())


def to_note_response(note: PsychologistNote) -> NoteResponse:
    return NoteResponse(
        id=note.id,
        psychologist_id=note.psychologist_id,
        patient_id=note.patient_id,
        note=note.note,
        created_at=note.created_at,
    )


def to_feedback_response(item: Feedback) -> FeedbackResponse:
    return FeedbackResponse(
        id=item.id,
        psychologist_id=item.psychologist_id,
        patient_id=item.patient_id,
        message=item.message,
        is_read=item.is_read,
        created_at=item.created_at,
    )


def to_message_response(item: Message) -> MessageResponse:
    return MessageResponse(
        id=item.id,
        sender_id=item.sender_id,
        sender_role=item.sender_role,
        patient_id=item.patient_id,
        message=item.message,
        is_read=item.is_read,
        created_at=item.created_at,
    )


def list_patients(db: Session) -> List[User]:
    return db.query(User).filter(User.role == PATIENT).order_by(User.id).all()


def build_patient_status(patient: User, db: Session) -> PatientStatusResponse:
    snapshot = compute_patient_status(
        str(patient.id),
        patient.name,
        patient.email,
        DiaryRecordStore(db),
        SqlOverrideStore(db),
        DAY_TIMEZONE,
    )
    return PatientStatusResponse(**snapshot.to_dict())


def select_diary_entries(patient_id: int, period: Optional[str], db: Session) -> List[DiaryEntry]:
    entries = DiaryRecordStore(db).list_entries(patient_id)
    if period:
        entries = filter_entries_by_period(entries, period, tz=DAY_TIMEZONE)
    return entries


def ensure_conversation_access(user: User, patient_id: int, db: Session) -> None:
    if user.role == PATIENT and user.id != patient_id:
        raise HTTPException(status_code=403, detail="Cannot access another patient's conversation")
    get_patient_or_404(patient_id, db)


@app.get("/health")
def health() -> dict:
    db_status = "ok"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        db_status = "error"
    return {
        "status": "ok",
        "version": APP_VERSION,
        "db": db_status,
        "dev_mode": is_dev_mode(),
    }


@app.get("/meta")
def meta() -> dict:
    return {
        "version": APP_VERSION,
        "dev_mode": is_dev_mode(),
        "db_path": DB_PATH,
        "timezone": str(DAY_TIMEZONE),
    }


@app.post("/auth/register", response_model=TokenResponse)
def register_user(payload: RegisterRequest, db: Session = Depends(get_db)) -> TokenResponse:
    if payload.role not in ROLES:
        raise HTTPException(status_code=400, detail=f"Role must be one of: {', '.join(sorted(ROLES))}")
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Name cannot be empty")
    existing = db.query(User).filter(User.email == payload.email).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    password_bytes = payload.password.encode("utf-8")
    if len(password_bytes) > 72:
        raise HTTPException(
            status_code=400,
            detail="Password too long (bcrypt limit is 72 bytes). Use a shorter password.",
        )
    try:
        hashed_password = get_password_hash(payload.password)
    except Exception as exc:
        raise HTTPException(
            status_code=500,
            detail="Unable to process password at this time.",
        ) from exc
    user = User(
        email=payload.email,
        name=payload.name.strip(),
        role=payload.role,
        hashed_password=hashed_password,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
    return TokenResponse(access_token=token, token_type="bearer")


@app.post("/auth/login", response_model=TokenResponse)
def login_user(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> TokenResponse:
    user = db.query(User).filter(User.email == form_data.username).first()
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
    return TokenResponse(access_token=token, token_type="bearer")


@app.get("/auth/me", response_model=UserResponse)
def auth_me(user: User = Depends(get_current_user)) -> UserResponse:
    return to_user_response(user)


@app.post("/diary", response_model=DiaryCreateResponse)
def create_diary_entry(
    payload: DiaryCreate,
    user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
) -> DiaryCreateResponse:
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Diary content cannot be empty")
    result = simulate_classification(content)
    entry = DiaryEntry(
        user_id=user.id,
        content=content,
        label=result.label,
        confidence=result.confidence,
        probabilities_json=json.dumps(result.probabilities),
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    alert = compute_self_alert(str(user.id), DiaryRecordStore(db), SqlOverrideStore(db), DAY_TIMEZONE)
    return DiaryCreateResponse(entry=to_diary_response(entry), self_alert=to_self_alert_response(alert))


@app.get("/diary", response_model=List[DiaryResponse])
def list_diary_entries(
    period: Optional[str] = Query(None, pattern="^(daily|weekly|monthly)$"),
    user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
) -> List[DiaryResponse]:
    return [to_diary_response(entry) for entry in select_diary_entries(user.id, period, db)]


@app.get("/alerts/self", response_model=Optional[SelfAlertResponse])
def self_alert(
    user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
) -> Optional[SelfAlertResponse]:
    alert = compute_self_alert(str(user.id), DiaryRecordStore(db), SqlOverrideStore(db), DAY_TIMEZONE)
    return to_self_alert_response(alert)


@app.get("/patients", response_model=List[PatientStatusResponse])
def patients_overview(
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> List[PatientStatusResponse]:
    statuses = list_patient_statuses(list_patients(db), DiaryRecordStore(db), SqlOverrideStore(db), DAY_TIMEZONE)
    return [PatientStatusResponse(**item.to_dict()) for item in statuses]


@app.get("/patients/at-risk", response_model=List[PatientStatusResponse])
def patients_at_risk(
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> List[PatientStatusResponse]:
    statuses = list_at_risk_patients(list_patients(db), DiaryRecordStore(db), SqlOverrideStore(db), DAY_TIMEZONE)
    return [PatientStatusResponse(**item.to_dict()) for item in statuses]


@app.get("/patients/{patient_id}/status", response_model=PatientStatusResponse)
def patient_status(
    patient_id: int,
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> PatientStatusResponse:
    return build_patient_status(get_patient_or_404(patient_id, db), db)


@app.get("/patients/{patient_id}/diary", response_model=List[DiaryResponse])
def patient_diary(
    patient_id: int,
    period: Optional[str] = Query(None, pattern="^(daily|weekly|monthly)$"),
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> List[DiaryResponse]:
    get_patient_or_404(patient_id, db)
    return [to_diary_response(entry) for entry in select_diary_entries(patient_id, period, db)]


@app.post("/patients/{patient_id}/mark-safe", response_model=OverrideResponse)
def patient_mark_safe(
    patient_id: int,
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> OverrideResponse:
    patient = get_patient_or_404(patient_id, db)
    override = mark_patient_safe(str(patient.id), str(user.id), SqlOverrideStore(db))
    return OverrideResponse(
        patient_id=override.patient_id,
        issued_at=override.issued_at,
        issued_by=override.issued_by,
        alert_level=build_patient_status(patient, db).alert_level,
    )


@app.delete("/patients/{patient_id}/override")
def patient_remove_override(
    patient_id: int,
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> dict:
    patient = get_patient_or_404(patient_id, db)
    removed = remove_patient_override(str(patient.id), SqlOverrideStore(db))
    return {"removed": removed, "alert_level": build_patient_status(patient, db).alert_level}


@app.get("/patients/{patient_id}/notes", response_model=List[NoteResponse])
def patient_notes(
    patient_id: int,
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> List[NoteResponse]:
    get_patient_or_404(patient_id, db)
    notes = (
        db.query(PsychologistNote)
        .filter(PsychologistNote.patient_id == patient_id)
        .order_by(PsychologistNote.created_at.desc())
        .all()
    )
    return [to_note_response(note) for note in notes]


@app.post("/patients/{patient_id}/notes", response_model=NoteResponse)
def patient_add_note(
    patient_id: int,
    payload: NoteCreate,
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> NoteResponse:
    get_patient_or_404(patient_id, db)
    if not payload.note.strip():
        raise HTTPException(status_code=400, detail="Note cannot be empty")
    note = PsychologistNote(psychologist_id=user.id, patient_id=patient_id, note=payload.note.strip())
    db.add(note)
    db.commit()
    db.refresh(note)
    return to_note_response(note)


@app.post("/patients/{patient_id}/feedback", response_model=FeedbackResponse)
def patient_send_feedback(
    patient_id: int,
    payload: FeedbackCreate,
    user: User = Depends(get_current_psychologist),
    db: Session = Depends(get_db),
) -> FeedbackResponse:
    get_patient_or_404(patient_id, db)
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="Feedback cannot be empty")
    item = Feedback(psychologist_id=user.id, patient_id=patient_id, message=payload.message.strip())
    db.add(item)
    db.commit()
    db.refresh(item)
    return to_feedback_response(item)


@app.get("/feedback", response_model=List[FeedbackResponse])
def list_feedback(
    user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
) -> List[FeedbackResponse]:
    items = (
        db.query(Feedback)
        .filter(Feedback.patient_id == user.id)
        .order_by(Feedback.created_at.desc())
        .all()
    )
    return [to_feedback_response(item) for item in items]


@app.get("/feedback/unread_count")
def feedback_unread_count(
    user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
) -> dict:
    count = (
        db.query(Feedback)
        .filter(Feedback.patient_id == user.id, Feedback.is_read.is_(False))
        .count()
    )
    return {"unread": count}


@app.post("/feedback/{feedback_id}/read", response_model=FeedbackResponse)
def feedback_mark_read(
    feedback_id: int,
    user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
) -> FeedbackResponse:
    item = (
        db.query(Feedback)
        .filter(Feedback.id == feedback_id, Feedback.patient_id == user.id)
        .first()
    )
    if item is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    item.is_read = True
    db.commit()
    db.refresh(item)
    return to_feedback_response(item)


@app.get("/messages/unread_count")
def messages_unread_count(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Message).filter(Message.is_read.is_(False))
    if user.role == PATIENT:
        query = query.filter(Message.patient_id == user.id, Message.sender_role == PSYCHOLOGIST)
    else:
        query = query.filter(Message.sender_role == PATIENT)
    return {"unread": query.count()}


@app.get("/messages/{patient_id}", response_model=List[MessageResponse])
def list_messages(
    patient_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[MessageResponse]:
    ensure_conversation_access(user, patient_id, db)
    items = (
        db.query(Message)
        .filter(Message.patient_id == patient_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )
    return [to_message_response(item) for item in items]


@app.post("/messages/{patient_id}", response_model=MessageResponse)
def send_message(
    patient_id: int,
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MessageResponse:
    ensure_conversation_access(user, patient_id, db)
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    item = Message(
        sender_id=user.id,
        sender_role=user.role,
        patient_id=patient_id,
        message=payload.message.strip(),
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return to_message_response(item)


@app.post("/messages/{patient_id}/read")
def mark_messages_read(
    patient_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    ensure_conversation_access(user, patient_id, db)
    updated = (
        db.query(Message)
        .filter(
            Message.patient_id == patient_id,
            Message.sender_role != user.role,
            Message.is_read.is_(False),
        )
        .update({Message.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return {"updated": updated}


def seed_demo_rows(db: Session, rng: Optional[random.Random] = None, now: Optional[datetime] = None) -> dict:
    rng = rng or random.Random()
    now = now or datetime.utcnow()
    if db.query(User).filter(User.email == DEMO_PATIENT_EMAIL).first():
        return {"status": "exists", "created": {}}

    hashed_password = get_password_hash(DEMO_PASSWORD)
    patient = User(
        email=DEMO_PATIENT_EMAIL,
        name="Andi Pratama",
        role=PATIENT,
        hashed_password=hashed_password,
        created_at=now - timedelta(days=30),
    )
    psychologist = User(
        email=DEMO_PSYCHOLOGIST_EMAIL,
        name="Dr. Sari Wulandari",
        role=PSYCHOLOGIST,
        hashed_password=hashed_password,
        created_at=now - timedelta(days=60),
    )
    db.add_all([patient, psychologist])
    db.flush()

    for item in DEMO_DIARY:
        result = build_demo_probabilities(item["emotion"], rng)
        created_at = min(now, (now - timedelta(days=item["days_ago"])).replace(
            hour=rng.randint(8, 19),
            minute=rng.randint(0, 59),
        ))
        db.add(DiaryEntry(
            user_id=patient.id,
            content=item["text"],
            label=result.label,
            confidence=result.confidence,
            probabilities_json=json.dumps(result.probabilities),
            created_at=created_at,
            is_demo=True,
        ))
    for item in DEMO_FEEDBACK:
        db.add(Feedback(
            psychologist_id=psychologist.id,
            patient_id=patient.id,
            message=item["message"],
            is_read=item["is_read"],
            created_at=now - timedelta(days=item["days_ago"]),
        ))
    db.add(PsychologistNote(
        psychologist_id=psychologist.id,
        patient_id=patient.id,
        note=DEMO_NOTE,
        created_at=now - timedelta(days=1),
    ))
    db.commit()
    logger.info("Seeded demo data for patient %s and psychologist %s", patient.id, psychologist.id)
    return {
        "status": "seeded",
        "created": {
            "users": 2,
            "diary_entries": len(DEMO_DIARY),
            "feedback": len(DEMO_FEEDBACK),
            "notes": 1,
        },
    }


@app.post("/dev/seed_demo")
def seed_demo_data(db: Session = Depends(get_db)) -> dict:
    if not is_dev_mode():
        raise HTTPException(status_code=404, detail="Not found")
    return seed_demo_rows(db)
