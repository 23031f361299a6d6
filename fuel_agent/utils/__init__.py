from .message import MessageError, compose_fillup_message, sms_link
