from fastapi import Request

from sessionauth.services.email import EmailDispatcher


def get_email_dispatcher(request: Request) -> EmailDispatcher:
    # Built once in sessionauth.main at startup; tests override this dependency.
    return request.app.state.email_dispatcher
