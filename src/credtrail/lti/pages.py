"""
HTML pages rendered at the end of a launch.

Both pages are small enough to build inline; every interpolated value goes
through ``html.escape``.
"""

from __future__ import annotations

from collections.abc import Sequence
from html import escape

from .claims import ROLE_KIND_LABELS, LtiRoleKind
from .deep_linking import DeepLinkOption

UNSIGNED_RESPONSE_NOTICE = (
    "This environment is returning unsigned JWT responses (alg=none). "
    "Use signed launch and response verification before production LMS rollout."
)
NO_TEMPLATES_MESSAGE = "No active badge templates are available for this tenant."

_STYLE = """
  body { font-family: system-ui, sans-serif; margin: 0; padding: 1.5rem; color: #17324d; background: #f4f8fc; }
  header { background: #0b4f8a; color: #fff; border-radius: 0.75rem; padding: 1rem 1.25rem; }
  header h1 { margin: 0; font-size: 1.4rem; }
  header p { margin: 0.25rem 0 0 0; }
  .card { background: #fff; border: 1px solid #d3dfeb; border-radius: 0.75rem; padding: 1rem; margin-top: 1rem; }
  dl { display: grid; grid-template-columns: max-content 1fr; gap: 0.4rem 0.8rem; margin: 0; }
  dt { font-weight: 600; }
  dd { margin: 0; overflow-wrap: anywhere; }
  .notice { background: #fff4e5; color: #7f4a0c; border-radius: 0.5rem; padding: 0.75rem; }
"""


def dashboard_path(tenant_id: str) -> str:
    return f"/tenants/{tenant_id}/learner/dashboard"


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>"
        '<html lang="en"><head><meta charset="utf-8">'
        f"<title>{escape(title)}</title><style>{_STYLE}</style></head>"
        f"<body>{body}</body></html>"
    )


def _details(rows: Sequence[tuple[str, str]]) -> str:
    items = "".join(f"<dt>{escape(label)}</dt><dd>{escape(value)}</dd>" for label, value in rows)
    return f"<dl>{items}</dl>"


def launch_result_page(
    *,
    role_kind: LtiRoleKind,
    issuer: str,
    deployment_id: str,
    tenant_id: str,
    user_id: str,
    membership_role: str,
    learner_profile_id: str,
    subject: str,
    message_type: str,
    target_link_uri: str,
    nrps_memberships_url: str | None = None,
) -> str:
    rows = [
        ("Issuer", issuer),
        ("Deployment ID", deployment_id),
        ("Tenant", tenant_id),
        ("User ID", user_id),
        ("Membership role", membership_role),
        ("Learner profile", learner_profile_id),
        ("LTI subject", subject),
        ("Message type", message_type),
        ("Target link URI", target_link_uri),
    ]
    if nrps_memberships_url is not None:
        rows.append(("NRPS memberships URL", nrps_memberships_url))
    details = _details(rows)
    body = (
        "<header><h1>LTI 1.3 launch complete</h1>"
        f"<p>Launch accepted for <strong>{escape(ROLE_KIND_LABELS[role_kind])}</strong>.</p></header>"
        f'<section class="card">{details}</section>'
        '<section class="card">'
        "<p>LTI identity is linked and this browser is now signed into CredTrail.</p>"
        f'<p><a href="{escape(dashboard_path(tenant_id))}">Open learner dashboard</a></p>'
        "</section>"
    )
    return _page("LTI Launch | CredTrail", body)


def _option_block(option: DeepLinkOption, return_url: str) -> str:
    description = option.description or "No template description provided."
    return (
        '<article class="card">'
        f"<h2>{escape(option.title)}</h2>"
        f"<p>Template ID: {escape(option.badge_template_id)}</p>"
        f"<p>{escape(description)}</p>"
        f'<p>Launch URL: <a href="{escape(option.launch_url)}" target="_blank" '
        f'rel="noopener noreferrer">{escape(option.launch_url)}</a></p>'
        f'<form method="post" action="{escape(return_url)}">'
        f'<input type="hidden" name="JWT" value="{escape(option.response_token)}">'
        '<button type="submit">Place template in LMS</button>'
        "</form></article>"
    )


def deep_link_selection_page(
    *,
    issuer: str,
    deployment_id: str,
    tenant_id: str,
    user_id: str,
    membership_role: str,
    deep_link_return_url: str,
    target_link_uri: str,
    options: Sequence[DeepLinkOption],
    unsigned_responses: bool = True,
) -> str:
    details = _details(
        [
            ("Issuer", issuer),
            ("Deployment ID", deployment_id),
            ("Tenant", tenant_id),
            ("User ID", user_id),
            ("Membership role", membership_role),
            ("Deep link return URL", deep_link_return_url),
            ("Target link URI", target_link_uri),
        ]
    )
    if options:
        option_html = "".join(_option_block(option, deep_link_return_url) for option in options)
    else:
        option_html = f'<p class="card">{escape(NO_TEMPLATES_MESSAGE)}</p>'

    notice = f'<p class="notice">{escape(UNSIGNED_RESPONSE_NOTICE)}</p>' if unsigned_responses else ""
    body = (
        "<header><h1>Select badge template placement</h1>"
        "<p>Choose a badge template and return it to your LMS via LTI Deep Linking.</p></header>"
        f'<section class="card">{details}</section>'
        f"{notice}"
        f"<section>{option_html}</section>"
    )
    return _page("LTI Deep Linking | CredTrail", body)
