from typing import List, Optional

from app.core.config import settings

# Tier catalogue shared by onboarding and upgrade flows
PRICING_TIERS = [
    {
        'id': 'pro',
        'name': 'Pro',
        'price': '$19',
        'interval': '/month',
        'description': 'Perfect for small teams and startups',
        'features': [
            'All template features',
            'Priority support',
            'Custom branding',
            'Analytics dashboard',
            'Team collaboration',
        ],
        'popular': False,
        'price_setting': 'stripe_pro_price_id',
        'payment_link_setting': 'stripe_pro_payment_link',
        'cta': 'Get Started',
    },
    {
        'id': 'enterprise',
        'name': 'Enterprise',
        'price': '$49',
        'interval': '/month',
        'description': 'For larger organizations',
        'features': [
            'Everything in Pro',
            'Advanced security',
            'Custom integrations',
            '24/7 support',
            'SLA guarantee',
        ],
        'popular': True,
        'price_setting': 'stripe_enterprise_price_id',
        'payment_link_setting': 'stripe_enterprise_payment_link',
        'cta': 'Start Trial',
    },
    {
        'id': 'custom',
        'name': 'Custom',
        'price': 'Custom',
        'interval': '',
        'description': 'Tailored to your needs',
        'features': [
            'Custom development',
            'Dedicated support',
            'Custom SLA',
            'On-premise options',
            'Training sessions',
        ],
        'popular': False,
        'cta': 'Contact Sales',
    },
]


def _render(tier: dict) -> dict:
    """Public view of a tier with Stripe ids resolved from settings"""
    rendered = {k: v for k, v in tier.items() if not k.endswith('_setting')}
    price_setting = tier.get('price_setting')
    link_setting = tier.get('payment_link_setting')
    rendered['price_id'] = getattr(settings, price_setting) if price_setting else None
    rendered['stripe_payment_link'] = getattr(settings, link_setting) if link_setting else None
    return rendered


def get_all_pricing_tiers() -> List[dict]:
    return [_render(tier) for tier in PRICING_TIERS]


def get_pricing_tier(tier_id: str) -> Optional[dict]:
    for tier in PRICING_TIERS:
        if tier['id'] == tier_id:
            return _render(tier)
    return None


def get_upgrade_pricing_tiers(current_plan: Optional[str]) -> List[dict]:
    """Purchasable tiers (those with a price id), flagging the caller's current one"""
    tiers = []
    for tier in get_all_pricing_tiers():
        if not tier['price_id']:
            continue
        tier['current'] = tier['id'] == current_plan
        tiers.append(tier)
    return tiers
