from fastapi import HTTPException


class CarpoolError(HTTPException):
    """Base for business-rule failures.

    Subclasses fix the HTTP status and the default message. ``extra`` is
    merged into the JSON error body next to ``error``.
    """

    status_code = 400
    message = "Request could not be processed"

    def __init__(self, detail: str = None, extra: dict = None):
        super().__init__(status_code=self.status_code, detail=detail or self.message)
        self.extra = extra or {}


class InvalidObjectId(CarpoolError):
    message = "Invalid ID"


# Auth
class NotAuthenticated(CarpoolError):
    status_code = 401
    message = "Authentication required"


class InvalidToken(CarpoolError):
    status_code = 401
    message = "Invalid token"


class InvalidCredentials(CarpoolError):
    status_code = 401
    message = "Invalid email or password"


class UserBanned(CarpoolError):
    status_code = 403
    message = "Your account has been banned"


class AdminRequired(CarpoolError):
    status_code = 403
    message = "Admin access required"


class EmailNotVerified(CarpoolError):
    message = "Email not verified. Please verify your email first."

    def __init__(self):
        super().__init__(extra={"requires_verification": True})


class EmailTaken(CarpoolError):
    message = "Email already registered"


class UsernameTaken(CarpoolError):
    message = "Username already taken"


class UserNotFound(CarpoolError):
    status_code = 404
    message = "User not found"


# Ride lifecycle
class RideNotFound(CarpoolError):
    status_code = 404
    message = "Ride not found"


class InvalidSeatCount(CarpoolError):
    message = "A ride must offer at least one seat"


class RideNotActive(CarpoolError):
    message = "Ride is not active"


class SelfJoin(CarpoolError):
    message = "Cannot join your own ride"


class NoSeats(CarpoolError):
    message = "No seats available"


class AlreadyJoined(CarpoolError):
    message = "Already joined this ride"


class NotAParticipant(CarpoolError):
    message = "Not a participant of this ride"


class NotDriver(CarpoolError):
    status_code = 403
    message = "Only the driver can modify the ride"


class ConcurrentModification(CarpoolError):
    status_code = 409
    message = "Ride was modified by another request. Please try again."


# Ratings
class InvalidStars(CarpoolError):
    message = "Stars must be between 0 and 5"


class SelfRating(CarpoolError):
    message = "Cannot rate yourself"


class DuplicateRating(CarpoolError):
    message = "Already rated this user for this ride"


class RideNotCompleted(CarpoolError):
    message = "Can only rate completed rides"


# Complaints and SOS
class SelfComplaint(CarpoolError):
    message = "Cannot file complaint against yourself"


class ComplaintNotFound(CarpoolError):
    status_code = 404
    message = "Complaint not found"


class SOSAlertNotFound(CarpoolError):
    status_code = 404
    message = "SOS alert not found"


class NotRideMember(CarpoolError):
    status_code = 403
    message = "Only ride participants can trigger SOS"


class InvalidTransition(CarpoolError):
    message = "Invalid status transition"


# Email OTP
class DomainNotAllowed(CarpoolError):
    message = "Email domain is not allowed"


class NoPendingOTP(CarpoolError):
    message = "No OTP found for this email"


class OTPExpired(CarpoolError):
    message = "OTP has expired. Please request a new one."


class TooManyAttempts(CarpoolError):
    message = "Too many failed attempts. Please request a new OTP."


class InvalidCode(CarpoolError):
    message = "Invalid OTP"

    def __init__(self, attempts_left: int):
        super().__init__(extra={"attempts_left": attempts_left})
        self.attempts_left = attempts_left


class OTPDeliveryFailed(CarpoolError):
    status_code = 500
    message = "Failed to send OTP. Please try again."
