def test_create_and_list_alternatives(client, auth_headers, user, make_subscription):
    subscription = make_subscription(user, amount=15.99)
    url = f"/api/subscriptions/{subscription.id}/alternatives"

    response = client.post(
        url,
        json={"name": "Prime Video", "provider": "Amazon", "amount": 8.99},
        headers=auth_headers,
    )
    assert response.status_code == 201
    assert response.json()["savings"] == 7.0

    client.post(
        url,
        json={"name": "Disney+", "provider": "Disney", "amount": 5.99},
        headers=auth_headers,
    )

    response = client.get(url, headers=auth_headers)
    assert response.status_code == 200
    assert [a["name"] for a in response.json()] == ["Disney+", "Prime Video"]
    assert response.json()[0]["subscription_id"] == subscription.id


def test_alternatives_of_another_users_subscription(
    client, auth_headers, other_user, make_subscription
):
    foreign = make_subscription(other_user)
    url = f"/api/subscriptions/{foreign.id}/alternatives"

    assert client.get(url, headers=auth_headers).status_code == 404
    response = client.post(
        url, json={"name": "X", "provider": "Y", "amount": 1}, headers=auth_headers
    )
    assert response.status_code == 404


def test_delete_alternative(client, auth_headers, other_headers, user, make_subscription):
    subscription = make_subscription(user)
    alternative = client.post(
        f"/api/subscriptions/{subscription.id}/alternatives",
        json={"name": "Prime Video", "provider": "Amazon", "amount": 8.99},
        headers=auth_headers,
    ).json()

    response = client.delete(f"/api/alternatives/{alternative['id']}", headers=other_headers)
    assert response.status_code == 404

    response = client.delete(f"/api/alternatives/{alternative['id']}", headers=auth_headers)
    assert response.status_code == 200

    response = client.delete(f"/api/alternatives/{alternative['id']}", headers=auth_headers)
    assert response.status_code == 404
