"""
Exceptions raised by the RBAC feature.

Field-level validation problems are never raised by the entities; they are
reported through ValidationResult. Only genuine rule breaches are exceptions.
"""
from typing import List


class RbacError(Exception):
    """Base exception for the RBAC feature."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class InvariantViolation(RbacError):
    """Raised when an operation would break a domain rule (e.g. deactivating a system role)."""
    pass


class RoleNotFoundError(RbacError):
    """Raised when a requested role does not exist."""

    def __init__(self, role_ref: str):
        self.role_ref = role_ref
        super().__init__(f"Role {role_ref} not found")


class AssignmentNotFoundError(RbacError):
    """Raised when a requested role assignment does not exist."""

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Role assignment {assignment_id} not found")


class RoleConflictError(RbacError):
    """Raised when a role with the same name already exists."""
    pass


class DuplicateAssignmentError(RbacError):
    """Raised when a user already holds an active assignment to the role."""

    def __init__(self, user_id: str, role_id: str):
        self.user_id = user_id
        self.role_id = role_id
        super().__init__(f"User {user_id} already has an active assignment to role {role_id}")


class InvalidInputError(RbacError):
    """Raised by the service layer when input fails validation."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input")
