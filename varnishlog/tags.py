"""Known VSL tags, grouped by the record family that parses them.

Reference: https://varnish-cache.org/docs/trunk/reference/vsl.html
"""

# Transaction boundaries
BEGIN = "Begin"
END = "End"
LINK = "Link"

# Headers
REQ_HEADER = "ReqHeader"
RESP_HEADER = "RespHeader"
BEREQ_HEADER = "BereqHeader"
BERESP_HEADER = "BerespHeader"
OBJ_HEADER = "ObjHeader"

# Header unsets
REQ_UNSET = "ReqUnset"
RESP_UNSET = "RespUnset"
BEREQ_UNSET = "BereqUnset"
BERESP_UNSET = "BerespUnset"
OBJ_UNSET = "ObjUnset"

# Request / response lines
REQ_METHOD = "ReqMethod"
BEREQ_METHOD = "BereqMethod"
REQ_URL = "ReqURL"
BEREQ_URL = "BereqURL"
REQ_PROTOCOL = "ReqProtocol"
RESP_PROTOCOL = "RespProtocol"
BEREQ_PROTOCOL = "BereqProtocol"
BERESP_PROTOCOL = "BerespProtocol"
OBJ_PROTOCOL = "ObjProtocol"
RESP_STATUS = "RespStatus"
BERESP_STATUS = "BerespStatus"
OBJ_STATUS = "ObjStatus"
RESP_REASON = "RespReason"
BERESP_REASON = "BerespReason"
OBJ_REASON = "ObjReason"

# Accounting and timing
REQ_ACCT = "ReqAcct"
BEREQ_ACCT = "BereqAcct"
PIPE_ACCT = "PipeAcct"
TIMESTAMP = "Timestamp"
REQ_START = "ReqStart"

# Sessions and backends
SESS_OPEN = "SessOpen"
SESS_CLOSE = "SessClose"
BACKEND_OPEN = "BackendOpen"
BACKEND_START = "BackendStart"
BACKEND_CLOSE = "BackendClose"
BACKEND_REUSE = "BackendReuse"

# Cache / object
HIT = "Hit"
HIT_MISS = "HitMiss"
HIT_PASS = "HitPass"
TTL = "TTL"
STORAGE = "Storage"
LENGTH = "Length"
GZIP = "Gzip"
FILTERS = "Filters"
FETCH_BODY = "Fetch_Body"
FETCH_ERROR = "FetchError"

# Known to varnishd, kept as generic records
BROTLI = "Brotli"
MSE4_NEW_OBJECT = "MSE4_NewObject"
MSE4_OBJ_ITER = "MSE4_ObjIter"
MSE4_CHUNK_FAULT = "MSE4_ChunkFault"

# VCL
VCL_CALL = "VCL_call"
VCL_RETURN = "VCL_return"
VCL_USE = "VCL_use"
VCL_LOG = "VCL_Log"
VCL_ERROR = "VCL_Error"

ERROR = "Error"

HEADER_TAGS = frozenset({REQ_HEADER, RESP_HEADER, BEREQ_HEADER, BERESP_HEADER, OBJ_HEADER})
UNSET_TAGS = frozenset({REQ_UNSET, RESP_UNSET, BEREQ_UNSET, BERESP_UNSET, OBJ_UNSET})

# Tags whose header belongs to the response side of a transaction
RESPONSE_HEADER_TAGS = frozenset({RESP_HEADER, BERESP_HEADER, RESP_UNSET, BERESP_UNSET})
REQUEST_HEADER_TAGS = frozenset({REQ_HEADER, BEREQ_HEADER, REQ_UNSET, BEREQ_UNSET})

# Header direction, shared by the set and unset variants
DIRECTIONS = {
    REQ_HEADER: "request",
    REQ_UNSET: "request",
    RESP_HEADER: "response",
    RESP_UNSET: "response",
    BEREQ_HEADER: "backend-request",
    BEREQ_UNSET: "backend-request",
    BERESP_HEADER: "backend-response",
    BERESP_UNSET: "backend-response",
    OBJ_HEADER: "object",
    OBJ_UNSET: "object",
}

# VCL_call values that open the response headers to VCL changes
VCL_CALL_DELIVER = "DELIVER"
VCL_CALL_BACKEND_RESPONSE = "BACKEND_RESPONSE"

# Link / Begin transaction types
LINK_TYPE_SESSION = "sess"
LINK_TYPE_REQUEST = "req"
LINK_TYPE_BEREQ = "bereq"

# Sentinel tag carried by placeholder transactions
MISSING = "__MISSING"
