from agrifair.storage import USERS, COMPLAINTS, FEATURED_FARMERS


def migrate_local_to_remote(local, remote):
    """Push the local JSON collections into the remote store.

    Users are matched by mobile (created remotely when missing) and rows
    owned by a local id are re-keyed to the matching durable id. The local
    files are rewritten with the durable ids so later reads agree.
    Returns a summary dict of counts.
    """
    summary = {"users": 0, "complaints": 0, "featured_farmers": 0, "skipped": 0}
    id_map = {}

    users = local.store.read(USERS)
    for rec in users:
        mobile = rec.get("mobile")
        if not mobile:
            summary["skipped"] += 1
            continue
        found, created = remote.find_or_create_user(rec.get("username") or "", mobile, rec.get("role") or "user")
        if created:
            summary["users"] += 1
        if rec.get("id") is not None:
            id_map[str(rec["id"])] = found.id
        local.save_user(found)

    complaints = local.store.read(COMPLAINTS)
    already_remote = {}
    for row in complaints:
        owner = id_map.get(str(row.get("userId")), row.get("userId"))
        if owner not in already_remote:
            already_remote[owner] = {c["id"] for c in remote.list_complaints(owner)}
        if row.get("id") in already_remote[owner]:
            continue
        saved = remote.create_complaint(dict(row, userId=owner))
        already_remote[owner].add(saved["id"])
        row.update(id=saved["id"], userId=owner)
        summary["complaints"] += 1
    local.store.write(COMPLAINTS, complaints)

    farmers = local.store.read(FEATURED_FARMERS)
    rekeyed = {}
    for row in farmers:
        owner = id_map.get(str(row.get("userId")), row.get("userId"))
        row["userId"] = owner
        # one profile per user: the newest row wins
        if owner not in rekeyed or (row.get("date") or "") >= (rekeyed[owner].get("date") or ""):
            rekeyed[owner] = row
    for row in rekeyed.values():
        remote.upsert_featured_farmer(row)
        summary["featured_farmers"] += 1
    local.store.write(FEATURED_FARMERS, list(rekeyed.values()))

    return summary
