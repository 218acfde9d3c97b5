import time
from datetime import date, datetime
from typing import Literal, Optional

from nanoid import generate
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _now() -> int:
    return int(time.time())


StudentLevel = Literal["100", "200", "300", "400"]
StudentStatus = Literal["undergraduate", "graduated", "extraYear"]
EntryMode = Literal["UE", "DE"]
GradeType = Literal["A", "B", "C", "D", "E", "F"]
ModerationStatus = Literal["none", "pending", "approved"]
ApprovalStage = Literal["ceo", "hod", "dean"]
SessionStatus = Literal["active", "completed"]
CourseOption = Literal["C", "E"]

APPROVAL_STAGES: tuple[ApprovalStage, ...] = ("ceo", "hod", "dean")


class College(Base):
    __tablename__ = "colleges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    departments: Mapped[list["Department"]] = relationship(back_populates="college")

    def __repr__(self) -> str:
        return f"<College id={self.id!r} code={self.code!r} name={self.name!r}>"


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    college_id: Mapped[int] = mapped_column(
        ForeignKey("colleges.id", ondelete="cascade"), nullable=False
    )
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    college: Mapped["College"] = relationship(back_populates="departments")

    def __repr__(self) -> str:
        return f"<Department id={self.id!r} name={self.name!r} college_id={self.college_id!r}>"


class Lecturer(Base):
    __tablename__ = "lecturers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_no: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    title: Mapped[Optional[str]] = mapped_column(String)
    surname: Mapped[str] = mapped_column(String, nullable=False)
    firstname: Mapped[str] = mapped_column(String, nullable=False)
    middlename: Mapped[Optional[str]] = mapped_column(String)
    rank: Mapped[Optional[str]] = mapped_column(String)
    department_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL")
    )
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    department: Mapped[Optional["Department"]] = relationship()

    @property
    def full_name(self) -> str:
        parts = [self.title, self.surname, self.firstname, self.middlename]
        return " ".join(p.strip() for p in parts if p and p.strip())

    def __repr__(self) -> str:
        return f"<Lecturer id={self.id!r} staff_no={self.staff_no!r} surname={self.surname!r}>"


class Student(Base):
    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reg_no: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    surname: Mapped[str] = mapped_column(String, nullable=False)
    firstname: Mapped[str] = mapped_column(String, nullable=False)
    middlename: Mapped[Optional[str]] = mapped_column(String)
    entry_mode: Mapped[EntryMode] = mapped_column(String, nullable=False, default="UE")
    level: Mapped[StudentLevel] = mapped_column(String, nullable=False, index=True)
    status: Mapped[StudentStatus] = mapped_column(
        String, nullable=False, default="undergraduate", index=True
    )
    department_id: Mapped[int] = mapped_column(
        ForeignKey("departments.id"), nullable=False, index=True
    )
    college_id: Mapped[int] = mapped_column(
        ForeignKey("colleges.id"), nullable=False, index=True
    )
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    department: Mapped["Department"] = relationship()
    college: Mapped["College"] = relationship()

    @property
    def full_name(self) -> str:
        parts = [self.surname, self.firstname, self.middlename]
        return " ".join(p.strip() for p in parts if p and p.strip())

    def __repr__(self) -> str:
        return (
            f"<Student id={self.id!r} reg_no={self.reg_no!r} level={self.level!r} "
            f"status={self.status!r}>"
        )


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    unit: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[StudentLevel] = mapped_column(String, nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    option: Mapped[CourseOption] = mapped_column(String, nullable=False, default="C")
    department_id: Mapped[Optional[int]] = mapped_column(ForeignKey("departments.id"))
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    department: Mapped[Optional["Department"]] = relationship()

    def __repr__(self) -> str:
        return f"<Course id={self.id!r} code={self.code!r} unit={self.unit!r}>"


class CourseRegistration(Base):
    __tablename__ = "course_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="cascade"), nullable=False
    )
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="cascade"), nullable=False
    )
    session: Mapped[str] = mapped_column(String, nullable=False)
    session_year: Mapped[int] = mapped_column(Integer, nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    student: Mapped["Student"] = relationship()
    course: Mapped["Course"] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "course_id",
            "session_year",
            "semester",
            "level",
            name="uq_course_registration_term",
        ),
        Index("ix_registration_term", "session_year", "semester", "level"),
    )

    def __repr__(self) -> str:
        return (
            f"<CourseRegistration student_id={self.student_id!r} course_id={self.course_id!r} "
            f"session={self.session!r} semester={self.semester!r} level={self.level!r}>"
        )


class Result(Base):
    __tablename__ = "results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="cascade"), nullable=False, index=True
    )
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.id", ondelete="cascade"), nullable=False
    )
    lecturer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("lecturers.id", ondelete="SET NULL")
    )
    session: Mapped[str] = mapped_column(String, nullable=False)
    session_year: Mapped[int] = mapped_column(Integer, nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    exam_date: Mapped[date] = mapped_column(Date, nullable=False)
    result_type: Mapped[str] = mapped_column(String, nullable=False, default="CORE")
    ca: Mapped[Optional[float]] = mapped_column(Float)
    exam: Mapped[Optional[float]] = mapped_column(Float)
    grand_total: Mapped[float] = mapped_column(Float, nullable=False)
    grade: Mapped[GradeType] = mapped_column(String, nullable=False)

    moderation_status: Mapped[ModerationStatus] = mapped_column(
        String, nullable=False, default="none"
    )
    moderated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    moderation_pending_total: Mapped[Optional[float]] = mapped_column(Float)
    moderation_original_total: Mapped[Optional[float]] = mapped_column(Float)
    moderation_original_grade: Mapped[Optional[GradeType]] = mapped_column(String)
    moderation_proof: Mapped[Optional[str]] = mapped_column(String)
    moderation_authorized_by: Mapped[Optional[str]] = mapped_column(String)
    moderation_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)
    updated_at: Mapped[Optional[int]] = mapped_column(Integer, onupdate=_now)

    student: Mapped["Student"] = relationship()
    course: Mapped["Course"] = relationship()
    lecturer: Mapped[Optional["Lecturer"]] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "course_id",
            "session_year",
            "semester",
            name="uq_result_student_course_term",
        ),
        Index("ix_result_term", "session_year", "semester", "level"),
    )

    def __repr__(self) -> str:
        return (
            f"<Result id={self.id!r} student_id={self.student_id!r} course_id={self.course_id!r} "
            f"grand_total={self.grand_total!r} grade={self.grade!r} "
            f"moderation_status={self.moderation_status!r}>"
        )


class AcademicStanding(Base):
    """Term and cumulative standing of one student for one term and level."""

    __tablename__ = "academic_standings"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: generate()
    )
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="cascade"), nullable=False, index=True
    )
    department_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("departments.id"), index=True
    )
    college_id: Mapped[Optional[int]] = mapped_column(ForeignKey("colleges.id"))
    session: Mapped[str] = mapped_column(String, nullable=False)
    session_year: Mapped[int] = mapped_column(Integer, nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    tcc: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    tce: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    tpe: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    gpa: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    ccc: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    cce: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    cpe: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    cgpa: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    previous_ccc: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    previous_cce: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    previous_cpe: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    previous_cgpa: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    student: Mapped["Student"] = relationship()
    approvals: Mapped[list["StandingApproval"]] = relationship(
        back_populates="standing", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "session_year",
            "semester",
            "level",
            name="uq_standing_student_term_level",
        ),
        Index("ix_standing_term", "session_year", "semester", "level"),
    )

    def approval(self, stage: ApprovalStage) -> Optional["StandingApproval"]:
        for item in self.approvals:
            if item.stage == stage:
                return item
        return None

    def is_approved(self, stage: ApprovalStage) -> bool:
        item = self.approval(stage)
        return bool(item and item.approved)

    def __repr__(self) -> str:
        return (
            f"<AcademicStanding id={self.id!r} student_id={self.student_id!r} "
            f"session={self.session!r} semester={self.semester!r} level={self.level!r} "
            f"gpa={self.gpa!r} cgpa={self.cgpa!r}>"
        )


class StandingApproval(Base):
    """One sign-off slot on a standing; written only by the approval chain."""

    __tablename__ = "standing_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    standing_id: Mapped[str] = mapped_column(
        ForeignKey("academic_standings.id", ondelete="cascade"), nullable=False
    )
    stage: Mapped[ApprovalStage] = mapped_column(String, nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approver_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    approver_staff_no: Mapped[Optional[str]] = mapped_column(String)
    approver_department_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL")
    )
    approver_college_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("colleges.id", ondelete="SET NULL")
    )
    note: Mapped[str] = mapped_column(String, nullable=False, default="")
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    standing: Mapped["AcademicStanding"] = relationship(back_populates="approvals")

    __table_args__ = (
        UniqueConstraint("standing_id", "stage", name="uq_standing_approval_stage"),
    )

    def __repr__(self) -> str:
        return (
            f"<StandingApproval standing_id={self.standing_id!r} stage={self.stage!r} "
            f"approved={self.approved!r} flagged={self.flagged!r}>"
        )


class AcademicSession(Base):
    """An academic session (term year); exactly one is current at a time."""

    __tablename__ = "academic_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    session_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[SessionStatus] = mapped_column(
        String, nullable=False, default="active"
    )
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    dean_id: Mapped[Optional[int]] = mapped_column(ForeignKey("lecturers.id"))
    hod_id: Mapped[Optional[int]] = mapped_column(ForeignKey("lecturers.id"))
    exam_officer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("lecturers.id"))
    principal_officers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    promotion_stats: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False, default=_now)

    def __repr__(self) -> str:
        return (
            f"<AcademicSession id={self.id!r} title={self.title!r} status={self.status!r} "
            f"is_current={self.is_current!r}>"
        )
