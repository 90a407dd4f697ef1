"""Redis Pub/Sub channel constants.

All channel names follow the convention: ch:world:<event_type>
"""


class Channels:
    """Redis Pub/Sub channel name constants for world events.

    The world core only publishes; map views, notification feeds and the
    market service subscribe.
    """

    # SpawnScheduler → map views
    # Payload: {spawn_id, region_id, creature_id, primary_species, window_start, expires_at}
    SPAWN_CREATED = "ch:world:spawn_created"

    # CaptureLockManager → map views, collection views
    # Payload: {spawn_id, creature_id, actor_id, captured_at}
    SPAWN_CAPTURED = "ch:world:spawn_captured"

    # BreedingService → collection views
    # Payload: {request_id, offspring_id, parent_a_id, parent_b_id, owner_id, generation}
    OFFSPRING_BORN = "ch:world:offspring_born"
