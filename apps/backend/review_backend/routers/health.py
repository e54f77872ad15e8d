from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
def health_check(request: Request) -> dict[str, str]:
    """Simple health check endpoint.

    ライブネス/レディネス確認用の簡易エンドポイント。
    監視ツールやコンテナオーケストレータからの疎通確認に使用。
    """
    return {"status": "ok", "store_backend": request.app.state.settings.store_backend}
