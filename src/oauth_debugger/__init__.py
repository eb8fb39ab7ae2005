from oauth_debugger.client.debugger import AuthDebugger
from oauth_debugger.client.state import AuthDebuggerState, OAuthStep
from oauth_debugger.client.state_machine import OAuthStateMachine

__all__ = ["AuthDebugger", "AuthDebuggerState", "OAuthStateMachine", "OAuthStep"]
