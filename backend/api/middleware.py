from django.conf import settings
from django.shortcuts import redirect

EXCLUDED_PREFIXES = ("/api/", "/static/", "/favicon.ico")


class SessionRedirectMiddleware:
    """
    Page-level session gate. API routes authenticate per view, so only page
    routes are redirected here: to the login page without a session, and away
    from it with one (unless the user is logging out).
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        path = request.path
        if path.startswith(EXCLUDED_PREFIXES):
            return self.get_response(request)

        login_url = settings.LOGIN_URL
        has_session = bool(request.COOKIES.get(settings.AUTH_COOKIE_NAME))
        is_public = path.rstrip("/") == login_url.rstrip("/")

        if not has_session and not is_public:
            return redirect(login_url)
        if has_session and is_public and request.GET.get("logout") != "true":
            return redirect("/")
        return self.get_response(request)
