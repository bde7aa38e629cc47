"""Redis Lua scripts for the sliding window rate limiter.

Redis runs a script as a single atomic unit, so the prune, count and
insert below cannot interleave with another check on the same key.
"""

# KEYS[1]: sorted set of admitted requests for one client and window
# ARGV[1]: now in epoch milliseconds (score of the new entry)
# ARGV[2]: window in milliseconds (also the key's PEXPIRE)
# ARGV[3]: limit
# ARGV[4]: member value, unique per call
# ARGV[5]: cutoff; entries scored at or below it are outside the window
#
# Returns {allowed, count_after, reset_at_ms}
SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local member = ARGV[4]
    local cutoff = ARGV[5]

    -- Expire stale entries
    redis.call('ZREMRANGEBYSCORE', key, '-inf', cutoff)

    local count = redis.call('ZCARD', key)

    if count >= limit then
        -- Denied: the window next admits when the oldest entry ages out
        local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        local reset_at = now + window
        if oldest[2] then
            reset_at = tonumber(oldest[2]) + window
        end
        return {0, count, reset_at}
    end

    redis.call('ZADD', key, ARGV[1], member)
    redis.call('PEXPIRE', key, ARGV[2])

    return {1, count + 1, now + window}
"""
