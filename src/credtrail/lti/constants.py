"""
LTI 1.3 protocol constants.

Claim names are the IMS namespaced URIs.
"""

LTI_OIDC_SCOPE = "openid"
LTI_OIDC_RESPONSE_TYPE = "id_token"
LTI_OIDC_RESPONSE_MODE = "form_post"
LTI_OIDC_PROMPT = "none"

LTI_STATE_TTL_SECONDS = 10 * 60
LTI_STATE_CLOCK_SKEW_SECONDS = 30
LTI_ID_TOKEN_IAT_SKEW_SECONDS = 60
LTI_DEEP_LINK_RESPONSE_TTL_SECONDS = 300

LTI_VERSION_1P3P0 = "1.3.0"

LTI_MESSAGE_TYPE_RESOURCE_LINK_REQUEST = "LtiResourceLinkRequest"
LTI_MESSAGE_TYPE_DEEP_LINKING_REQUEST = "LtiDeepLinkingRequest"
LTI_MESSAGE_TYPE_DEEP_LINKING_RESPONSE = "LtiDeepLinkingResponse"

LTI_CONTENT_ITEM_RESOURCE_LINK = "ltiResourceLink"

_LTI_CLAIM = "https://purl.imsglobal.org/spec/lti/claim/"
_LTI_DL_CLAIM = "https://purl.imsglobal.org/spec/lti-dl/claim/"

LTI_CLAIM_DEPLOYMENT_ID = _LTI_CLAIM + "deployment_id"
LTI_CLAIM_MESSAGE_TYPE = _LTI_CLAIM + "message_type"
LTI_CLAIM_VERSION = _LTI_CLAIM + "version"
LTI_CLAIM_TARGET_LINK_URI = _LTI_CLAIM + "target_link_uri"
LTI_CLAIM_RESOURCE_LINK = _LTI_CLAIM + "resource_link"
LTI_CLAIM_ROLES = _LTI_CLAIM + "roles"
LTI_CLAIM_CONTEXT = _LTI_CLAIM + "context"
LTI_CLAIM_LIS = _LTI_CLAIM + "lis"
LTI_CLAIM_CUSTOM = _LTI_CLAIM + "custom"

LTI_CLAIM_DEEP_LINKING_SETTINGS = _LTI_DL_CLAIM + "deep_linking_settings"
LTI_CLAIM_DEEP_LINKING_CONTENT_ITEMS = _LTI_DL_CLAIM + "content_items"
LTI_CLAIM_DEEP_LINKING_DATA = _LTI_DL_CLAIM + "data"

LTI_CLAIM_NRPS_NAMES_ROLE_SERVICE = "https://purl.imsglobal.org/spec/lti-nrps/claim/namesroleservice"

# Synthetic addresses for subjects that launch without an email claim.
LTI_SYNTHETIC_EMAIL_DOMAIN = "credtrail-lti.local"
