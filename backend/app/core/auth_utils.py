import logging
import os
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.lib.api_client import supabase

logger = logging.getLogger("journaldesk.auth")

# === Auth 核心配置 ===
# 中文注释:
# 1. 密钥来源于 Supabase Project Settings 中的 JWT Secret。
# 2. auto_error=False：缺少 Authorization 头时统一返回 401（而不是框架默认行为）。
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
ALGORITHM = "HS256"

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    解码并验证 Supabase JWT Token
    返回解析后的 User Payload: {"id", "email"}
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = credentials.credentials
    try:
        # 中文注释:
        # 1. 若为 HS256，则用本地密钥校验以减少外部请求。
        # 2. 其它签名算法走 Auth API 获取用户。
        header = jwt.get_unverified_header(token)
        if header.get("alg") == ALGORITHM and SUPABASE_JWT_SECRET:
            payload = jwt.decode(
                token,
                SUPABASE_JWT_SECRET,
                algorithms=[ALGORITHM],
                audience="authenticated",
            )
            user_id = payload.get("sub")
            if user_id is None:
                raise HTTPException(status_code=401, detail="Invalid token payload")
            return {"id": user_id, "email": payload.get("email")}
    except JWTError as e:
        logger.info("JWT verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Token invalid or expired")

    try:
        response = supabase.auth.get_user(token)
        user = response.user if response else None
    except Exception as e:
        # 中文注释: 若 Supabase 配置缺失/网络异常，不应返回 500 泄露内部错误，统一视为鉴权失败
        logger.warning("JWT fallback verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Token invalid or expired")

    if not user:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return {"id": user.id, "email": user.email}
