"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Dict

from shared.auth.jwt_handler import decode_token
from shared.database.models import UserRole


security = HTTPBearer()


def _user_from_payload(payload: Dict) -> Dict:
    role = payload.get('role', UserRole.ATTENDEE.value)
    if role not in UserRole.__members__:
        role = UserRole.ATTENDEE.value
    return {
        'user_id': payload.get('sub') or payload.get('user_id'),
        'email': payload.get('email'),
        'role': role,
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict:
    '''Obtener usuario actual desde token JWT'''
    payload = decode_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido o expirado',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    user = _user_from_payload(payload)
    if not user['user_id']:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido: falta user_id',
        )
    return user


async def get_current_admin(
    current_user: Dict = Depends(get_current_user)
) -> Dict:
    '''Verificar que el usuario sea admin'''
    if current_user.get('role') != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='forbidden'
        )
    return current_user
