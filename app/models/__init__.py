from .match import Match, MatchMessage, make_pair_key
from .interest import Interest
from .reconnect_request import ReconnectRequest
from .rate_limit import RateLimitCounter
