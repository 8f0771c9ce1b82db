"""
Event names published around boosts.

Payloads
--------
- ``boost.activated``: {player_id, game_id, boost_id, perk_id}
- ``boost.expired``: {player_id, game_id, boost_id, perk_id, perk_name}
"""

BOOST_ACTIVATED = "boost.activated"
BOOST_EXPIRED = "boost.expired"
