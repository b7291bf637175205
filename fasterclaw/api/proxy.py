"""
Secure integration proxy.

POST /proxy/slack                       - relay a Slack Web API call
POST /proxy/github                      - relay a GitHub REST call
POST /proxy/google                      - relay a Gmail or Google Calendar call
GET  /proxy/integrations/{instance_id}  - integrations an instance may use

Called by agents from inside their instance; there is no bearer token. Access
is scoped by the instance's integration bindings.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from fasterclaw.api.deps import get_proxy
from fasterclaw.schemas import ProxyRequest
from fasterclaw.services.integration_proxy import IntegrationProxy, ProxyCall, envelope

router = APIRouter(prefix="/proxy", tags=["Proxy"])


async def _relay(provider: str, title: str, body: ProxyRequest, proxy: IntegrationProxy):
    result = await proxy.call(
        provider,
        ProxyCall(
            instance_id=body.instance_id,
            endpoint=body.endpoint,
            method=body.method,
            params=body.params or {},
            body=body.body,
        ),
    )
    if result is None:
        return JSONResponse(
            status_code=404,
            content=envelope(False, error=f"{title} integration not found for this instance"),
        )
    return result


@router.post("/slack")
async def proxy_slack(body: ProxyRequest, proxy: IntegrationProxy = Depends(get_proxy)):
    return await _relay("slack", "Slack", body, proxy)


@router.post("/github")
async def proxy_github(body: ProxyRequest, proxy: IntegrationProxy = Depends(get_proxy)):
    return await _relay("github", "GitHub", body, proxy)


@router.post("/google")
async def proxy_google(body: ProxyRequest, proxy: IntegrationProxy = Depends(get_proxy)):
    return await _relay("google", "Google", body, proxy)


@router.get("/integrations/{instance_id}")
async def list_instance_integrations(instance_id: str, proxy: IntegrationProxy = Depends(get_proxy)):
    return {"integrations": await proxy.list_available(instance_id)}
