"""Role catalog: cached read-only view of roles plus user role assignments."""
import json
import logging
import threading
import weakref
from flask import current_app
from sqlalchemy import event, or_
from sqlalchemy.orm import Session
from ..models import db, Role, User, UserRoleAssignment
from ..errors import RoleNotFound, UserNotFound
from shared.enums import AccessLevel, SurveyStatus
from shared.models import as_local_naive, local_now
from shared.schemas import RoleSnapshot
from shared.transitions import grant_key_for
from shared.validation import ValidationError

logger = logging.getLogger(__name__)

# Every catalog alive in the process; committed role changes invalidate all of them
_live_catalogs = weakref.WeakSet()

# Session.info flag set when the open transaction wrote role rows
ROLES_CHANGED = 'workflow_roles_changed'


def invalidate_all_catalogs():
    """Drop every cached role snapshot in the process."""
    for catalog in list(_live_catalogs):
        catalog.invalidate()


@event.listens_for(Session, 'after_flush')
def _note_flushed_roles(session, flush_context):
    if any(isinstance(obj, Role) for obj in (*session.new, *session.dirty, *session.deleted)):
        session.info[ROLES_CHANGED] = True


@event.listens_for(Session, 'do_orm_execute')
def _note_bulk_role_writes(orm_execute_state):
    # query(Role).update()/delete() bypass the flush
    if orm_execute_state.is_update or orm_execute_state.is_delete:
        mapper = orm_execute_state.bind_mapper
        if mapper is not None and mapper.class_ is Role:
            orm_execute_state.session.info[ROLES_CHANGED] = True


@event.listens_for(Session, 'after_commit')
def _invalidate_on_commit(session):
    # Role writes become visible to other sessions only here
    if session.info.pop(ROLES_CHANGED, False):
        invalidate_all_catalogs()


@event.listens_for(Session, 'after_rollback')
def _forget_rolled_back_roles(session):
    session.info.pop(ROLES_CHANGED, None)


class RoleCatalog:
    """Source of truth for what each role may do.

    Role rows are loaded once into immutable ``RoleSnapshot`` objects and served
    from memory until a transaction that inserted, updated or deleted role rows
    commits. Writes made on a raw connection, outside the ORM session, are not
    seen; call ``invalidate_all_catalogs()`` after them.
    """

    def __init__(self, session=None):
        self._session = session
        self._lock = threading.RLock()
        self._by_id = None
        self._by_name = None
        _live_catalogs.add(self)

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def invalidate(self):
        with self._lock:
            self._by_id = None
            self._by_name = None
        logger.debug("Role catalog cache invalidated")

    def _load(self):
        with self._lock:
            if self._by_id is None:
                rows = self.session.query(Role).all()
                snapshots = [RoleSnapshot.model_validate(row) for row in rows]
                self._by_id = {s.id: s for s in snapshots}
                self._by_name = {s.name: s for s in snapshots}
                logger.info(f"Loaded {len(snapshots)} roles into catalog")
            return self._by_id, self._by_name

    def get_role(self, role_id):
        by_id, _ = self._load()
        role = by_id.get(role_id)
        if role is None:
            raise RoleNotFound(role_id)
        return role

    def get_role_by_name(self, name):
        _, by_name = self._load()
        role = by_name.get(name)
        if role is None:
            raise RoleNotFound(name)
        return role

    def list_roles(self):
        by_id, _ = self._load()
        return sorted(by_id.values(), key=lambda r: r.name)

    # Grant checks

    @staticmethod
    def has_status_transition_grant(role, from_status, to_status):
        """True only when the role explicitly grants the pair's transition key."""
        key = grant_key_for(from_status, to_status)
        return role.status_transitions.get(key) is True

    @staticmethod
    def effective_access_level(roles, status):
        """Highest access level any of the roles gives for surveys in ``status``."""
        status = SurveyStatus(status)
        best = AccessLevel.NONE
        for role in roles:
            level = role.status_access.get(status)
            if level is not None and level.rank > best.rank:
                best = level
        return best

    @staticmethod
    def has_permission(roles, resource, action):
        return any(role.can(resource, action) for role in roles)

    # Role store

    @staticmethod
    def _unexpired():
        return or_(UserRoleAssignment.expires_at.is_(None),
                   UserRoleAssignment.expires_at > local_now())

    def _active_assignments(self, user_id):
        return (
            self.session.query(UserRoleAssignment)
            .filter(UserRoleAssignment.user_id == user_id)
            .filter(UserRoleAssignment.is_active.is_(True))
            .filter(self._unexpired())
            .order_by(UserRoleAssignment.id)
            .all()
        )

    def roles_for_user(self, user_id):
        """Active roles from the user's active, non-expired assignments."""
        by_id, _ = self._load()
        roles = {}
        for assignment in self._active_assignments(user_id):
            role = by_id.get(assignment.role_id)
            if role is None:
                # The assignment outlived its role row
                logger.error(f"Assignment {assignment.id} references missing role {assignment.role_id}")
                raise RoleNotFound(assignment.role_id)
            if role.is_active:
                roles[role.id] = role
        return sorted(roles.values(), key=lambda r: r.name)

    def assignments_for_user(self, user_id):
        return self._active_assignments(user_id)

    def holders_of(self, role_name):
        """User ids currently holding the named role (active and non-expired)."""
        try:
            role = self.get_role_by_name(role_name)
        except RoleNotFound:
            logger.warning(f"No role named '{role_name}' in catalog")
            return []
        if not role.is_active:
            return []
        rows = (
            self.session.query(UserRoleAssignment.user_id)
            .filter(UserRoleAssignment.role_id == role.id)
            .filter(UserRoleAssignment.is_active.is_(True))
            .filter(self._unexpired())
            .distinct()
            .all()
        )
        return sorted(user_id for (user_id,) in rows)

    def assign_role(self, user_id, role_id, assigned_by=None, expires_at=None):
        """Assign a role to a user and commit."""
        if self.session.get(User, user_id) is None:
            raise UserNotFound(user_id)
        role = self.get_role(role_id)
        if not role.is_active:
            raise ValidationError(f"Role '{role.name}' is not active")

        existing = (
            self.session.query(UserRoleAssignment)
            .filter_by(user_id=user_id, role_id=role_id, is_active=True)
            .all()
        )
        now = local_now()
        if any(a.expires_at is None or a.expires_at > now for a in existing):
            raise ValidationError(f"User {user_id} already has role '{role.name}'")

        expires_at = as_local_naive(expires_at)
        if expires_at is not None and expires_at <= now:
            raise ValidationError("expires_at must be in the future")

        # Expired grants of the same role are retired
        for lapsed in existing:
            lapsed.is_active = False

        assignment = UserRoleAssignment(
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            assigned_at=local_now(),
            expires_at=expires_at,
            is_active=True,
        )
        self.session.add(assignment)
        self.session.commit()
        logger.info(f"Assigned role '{role.name}' to user {user_id}", extra={
            'extra_fields': {'user_id': user_id, 'role': role.name, 'assigned_by': assigned_by}
        })
        return assignment

    def revoke_role(self, user_id, role_id):
        """Soft-delete the user's active assignment of the role."""
        assignment = (
            self.session.query(UserRoleAssignment)
            .filter_by(user_id=user_id, role_id=role_id, is_active=True)
            .first()
        )
        if assignment is None:
            raise ValidationError(f"User {user_id} does not have role {role_id}")
        assignment.is_active = False
        self.session.commit()
        logger.info(f"Revoked role {role_id} from user {user_id}")
        return assignment


def load_role_seed(path):
    """Read seeded role definitions from a JSON file."""
    with open(path, 'r') as f:
        data = json.load(f)
    return data['roles']


def seed_roles(role_definitions, update_existing=False, session=None):
    """Insert seeded roles that do not exist yet.

    Every definition is validated as a RoleSnapshot before it is written.
    Existing roles are left untouched unless ``update_existing`` is set.

    Returns:
        dict: counts of created, updated and unchanged roles
    """
    session = session if session is not None else db.session
    summary = {'created': 0, 'updated': 0, 'unchanged': 0}

    for definition in role_definitions:
        RoleSnapshot.model_validate({'id': 0, **definition})
        role = session.query(Role).filter_by(name=definition['name']).first()
        if role is None:
            session.add(Role(
                name=definition['name'],
                description=definition.get('description', ''),
                permissions=definition.get('permissions', {}),
                status_transitions=definition.get('status_transitions', {}),
                status_access=definition.get('status_access', {}),
                is_active=definition.get('is_active', True),
            ))
            summary['created'] += 1
            logger.debug(f"Seeded role '{definition['name']}'")
        elif update_existing:
            role.description = definition.get('description', '')
            role.permissions = definition.get('permissions', {})
            role.status_transitions = definition.get('status_transitions', {})
            role.status_access = definition.get('status_access', {})
            role.is_active = definition.get('is_active', True)
            summary['updated'] += 1
        else:
            summary['unchanged'] += 1

    session.commit()
    logger.info(f"Role seeding finished: {summary}")
    return summary


def get_role_catalog():
    """Role catalog bound to the current Flask app."""
    return current_app.extensions['role_catalog']
