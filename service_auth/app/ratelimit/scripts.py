"""
Lua sources for the atomic rate limit algorithms.

Both scripts take ``KEYS[1]`` = rate limit key and
``ARGV = {window_seconds, max_requests, now}``; the sliding script also
takes ``ARGV[4]`` = a unique member id. An empty ``now`` means "use the
Redis server clock". Both return ``{allowed (1|0), retry_after_seconds}``.
"""

FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local window = tonumber(ARGV[1])
local max_requests = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

if now == nil then
  local t = redis.call('TIME')
  now = tonumber(t[1]) + tonumber(t[2]) / 1000000
end

local window_start = math.floor(now / window) * window
local window_key = key .. ':' .. string.format('%d', window_start)

local count = redis.call('INCR', window_key)
if count == 1 then
  redis.call('EXPIRE', window_key, window)
end

if count <= max_requests then
  return {1, 0}
end

local retry_after = math.ceil(window_start + window - now)
if retry_after < 1 then
  retry_after = 1
end
return {0, retry_after}
"""

SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local window = tonumber(ARGV[1])
local max_requests = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local member = ARGV[4]

if now == nil then
  local t = redis.call('TIME')
  now = tonumber(t[1]) + tonumber(t[2]) / 1000000
end

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)

local count = redis.call('ZCARD', key)
if count < max_requests then
  redis.call('ZADD', key, now, member)
  redis.call('EXPIRE', key, math.ceil(window))
  return {1, 0}
end

local retry_after = window
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
  retry_after = math.ceil(tonumber(oldest[2]) + window - now)
end
if retry_after < 1 then
  retry_after = 1
end
return {0, retry_after}
"""
