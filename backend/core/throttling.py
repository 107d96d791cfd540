from rest_framework.throttling import UserRateThrottle


class MutationUserThrottle(UserRateThrottle):
    """Per-user rate limit on payout and workflow mutations; reads are free."""

    scope = "mutation_user"

    def allow_request(self, request, view):
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            return super().allow_request(request, view)
        return True
