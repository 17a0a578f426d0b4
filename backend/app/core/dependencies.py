from fastapi import Request

from app.services.receipt_assistant import ReceiptAssistant


def get_assistant(request: Request) -> ReceiptAssistant:
    assistant = getattr(request.app.state, "assistant", None)
    if assistant is None:
        raise RuntimeError("Receipt assistant is not initialised")
    return assistant
