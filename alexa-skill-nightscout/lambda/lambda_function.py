import logging
import os

from ask_sdk_core.skill_builder import SkillBuilder
from ask_sdk_core.dispatch_components import AbstractRequestHandler
from ask_sdk_core.dispatch_components import AbstractExceptionHandler
from ask_sdk_core.handler_input import HandlerInput
from ask_sdk_model import Response

from glucose import handle_glucose_query


def _log_level() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


# Lambda attaches its own handler to the root logger.
logging.getLogger().setLevel(_log_level())
logger = logging.getLogger(__name__)

REPROMPT = "Try saying: what is my glucose?"


class LaunchRequestHandler(AbstractRequestHandler):
    def can_handle(self, handler_input: HandlerInput) -> bool:
        return handler_input.request_envelope.request.object_type == "LaunchRequest"

    def handle(self, handler_input: HandlerInput) -> Response:
        speak_output = (
            'Welcome to Glucose Monitor. You can say "what is my glucose" '
            "to get your latest reading."
        )
        return handler_input.response_builder.speak(speak_output).ask(REPROMPT).response


class GetGlucoseIntentHandler(AbstractRequestHandler):
    def can_handle(self, handler_input: HandlerInput) -> bool:
        req = handler_input.request_envelope.request
        return req.object_type == "IntentRequest" and req.intent.name == "GetGlucoseIntent"

    def handle(self, handler_input: HandlerInput) -> Response:
        logger.info("GetGlucoseIntent invoked")
        result = handle_glucose_query()
        return handler_input.response_builder.speak(result.speech).response


class HelpIntentHandler(AbstractRequestHandler):
    def can_handle(self, handler_input: HandlerInput) -> bool:
        req = handler_input.request_envelope.request
        return req.object_type == "IntentRequest" and req.intent.name == "AMAZON.HelpIntent"

    def handle(self, handler_input: HandlerInput) -> Response:
        speak_output = (
            'You can say "what is my glucose" and I will read your latest '
            "Nightscout value. What would you like to do?"
        )
        return (
            handler_input.response_builder.speak(speak_output)
            .ask(speak_output)
            .response
        )


class CancelOrStopIntentHandler(AbstractRequestHandler):
    def can_handle(self, handler_input: HandlerInput) -> bool:
        req = handler_input.request_envelope.request
        return (
            req.object_type == "IntentRequest"
            and req.intent.name in ("AMAZON.CancelIntent", "AMAZON.StopIntent")
        )

    def handle(self, handler_input: HandlerInput) -> Response:
        return handler_input.response_builder.speak("Goodbye!").response


class FallbackIntentHandler(AbstractRequestHandler):
    def can_handle(self, handler_input: HandlerInput) -> bool:
        req = handler_input.request_envelope.request
        return req.object_type == "IntentRequest" and req.intent.name == "AMAZON.FallbackIntent"

    def handle(self, handler_input: HandlerInput) -> Response:
        speak_output = "I didn't understand that. " + REPROMPT
        return (
            handler_input.response_builder.speak(speak_output)
            .ask(speak_output)
            .response
        )


class SessionEndedRequestHandler(AbstractRequestHandler):
    def can_handle(self, handler_input: HandlerInput) -> bool:
        return handler_input.request_envelope.request.object_type == "SessionEndedRequest"

    def handle(self, handler_input: HandlerInput) -> Response:
        req = handler_input.request_envelope.request
        if req.error is not None:
            logger.error("Session ended with error: %s", req.error)
        else:
            logger.info("Session ended: %s", req.reason)
        return handler_input.response_builder.response


class CatchAllExceptionHandler(AbstractExceptionHandler):
    def can_handle(self, handler_input: HandlerInput, exception: Exception) -> bool:
        return True

    def handle(self, handler_input: HandlerInput, exception: Exception) -> Response:
        logger.error("Unhandled error: %s", exception, exc_info=exception)
        speak_output = "Sorry, something went wrong. Please try again."
        return handler_input.response_builder.speak(speak_output).response


sb = SkillBuilder()

sb.add_request_handler(LaunchRequestHandler())
sb.add_request_handler(GetGlucoseIntentHandler())
sb.add_request_handler(HelpIntentHandler())
sb.add_request_handler(CancelOrStopIntentHandler())
sb.add_request_handler(FallbackIntentHandler())
sb.add_request_handler(SessionEndedRequestHandler())

sb.add_exception_handler(CatchAllExceptionHandler())

lambda_handler = sb.lambda_handler()
