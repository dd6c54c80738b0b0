"""
Organization Models: departments, users, role groups.

The routing engine only ever reads these tables (through
``SqlOrganizationDirectory``). They are written by the surrounding
platform and by test fixtures.

Hierarchy:
    Department ──parent──▶ Department
        ├── head_of_department / head_of_department_substitute
        └── director / director_substitute
    User ──▶ Department
    RoleGroup ◀── role_group_members (ordered by position) ──▶ User
"""

from datetime import datetime, timezone

from sqlalchemy import func, select

from approval_routing.models import db

# Seniority order, lowest first. Role-based routing compares ranks.
DEPARTMENT_ROLES = ("employee", "team_lead", "manager", "director", "president")
DEPARTMENT_ROLE_RANK = {role: rank for rank, role in enumerate(DEPARTMENT_ROLES)}


def role_rank(role: str | None) -> int:
    """Return the seniority rank of a role; unknown/empty ranks below employee."""
    return DEPARTMENT_ROLE_RANK.get(role or "", -1)


role_group_members = db.Table(
    "role_group_members",
    db.Column(
        "role_group_id",
        db.Integer,
        db.ForeignKey("role_groups.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "user_id",
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column("position", db.Integer, nullable=False, default=0),
)


# ═══════════════════════════════════════════════════════════════
# 1. DEPARTMENTS
# ═══════════════════════════════════════════════════════════════
class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    parent_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True
    )

    head_of_department_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    head_of_department_substitute_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    director_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    director_substitute_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    parent_department = db.relationship(
        "Department", remote_side=[id], foreign_keys=[parent_department_id]
    )
    head_of_department = db.relationship("User", foreign_keys=[head_of_department_id])
    head_of_department_substitute = db.relationship(
        "User", foreign_keys=[head_of_department_substitute_id]
    )
    director = db.relationship("User", foreign_keys=[director_id])
    director_substitute = db.relationship("User", foreign_keys=[director_substitute_id])

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "parent_department_id": self.parent_department_id,
            "head_of_department_id": self.head_of_department_id,
            "head_of_department_substitute_id": self.head_of_department_substitute_id,
            "director_id": self.director_id,
            "director_substitute_id": self.director_substitute_id,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Department #{self.id} {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    department_id = db.Column(
        db.Integer,
        db.ForeignKey("departments.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
        index=True,
    )
    department_role = db.Column(
        db.String(20), default="employee",
        comment="employee | team_lead | manager | director | president",
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    department = db.relationship("Department", foreign_keys=[department_id])

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "department_id": self.department_id,
            "department_role": self.department_role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User #{self.id} {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 3. ROLE GROUPS
# ═══════════════════════════════════════════════════════════════
class RoleGroup(db.Model):
    __tablename__ = "role_groups"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(500), default="")
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def add_member(self, user: User, position: int | None = None) -> None:
        """Append a user to the group; position defaults to the end of the list."""
        if position is None:
            position = db.session.execute(
                select(func.count())
                .select_from(role_group_members)
                .where(role_group_members.c.role_group_id == self.id)
            ).scalar_one()
        db.session.execute(
            role_group_members.insert().values(
                role_group_id=self.id, user_id=user.id, position=position,
            )
        )

    def to_dict(self):
        return {"id": self.id, "name": self.name, "description": self.description}

    def __repr__(self):
        return f"<RoleGroup #{self.id} {self.name}>"
